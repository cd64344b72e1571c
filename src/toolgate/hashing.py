# One-way hashing and random token generation for stored credentials.
# Created: 2026-10-19
#
# Raw secrets (API keys, OAuth codes/tokens, client secrets) are never stored
# or cached. Lookups go through hash_secret(), which is deterministic so it can
# key both the store and the in-process caches. With a pepper configured the
# digest is HMAC-SHA256 keyed by it; otherwise plain SHA-256.

from __future__ import annotations

import hashlib
import hmac
import secrets


def hash_secret(value: str, pepper: str = "") -> str:
    """Return the hex digest used to store and look up *value*."""
    if pepper:
        return hmac.new(pepper.encode(), value.encode(), hashlib.sha256).hexdigest()
    return hashlib.sha256(value.encode()).hexdigest()


def secrets_match(presented: str, stored_hash: str, pepper: str = "") -> bool:
    """Constant-time check of a presented secret against its stored hash."""
    return hmac.compare_digest(hash_secret(presented, pepper), stored_hash)


def generate_token(nbytes: int = 32, prefix: str = "") -> str:
    """URL-safe random token, optionally prefixed for identification in logs."""
    return f"{prefix}{secrets.token_urlsafe(nbytes)}"


def short_hash(value_hash: str) -> str:
    """First 8 chars of a hash, safe to log."""
    return value_hash[:8]
