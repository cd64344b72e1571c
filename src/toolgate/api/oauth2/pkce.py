# PKCE (RFC 7636). Only the S256 method is accepted.
# Created: 2026-10-19

from __future__ import annotations

import base64
import hashlib
import hmac

SUPPORTED_METHODS = ("S256",)


def s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def verify_pkce(verifier: str, challenge: str, method: str) -> bool:
    """Check *verifier* against a stored *challenge* in constant time."""
    if method != "S256" or not verifier or not challenge:
        return False
    return hmac.compare_digest(s256_challenge(verifier).encode(), challenge.encode())
