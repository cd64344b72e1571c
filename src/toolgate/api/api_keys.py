# API Key Manager: create, revoke, rotate, list.
# Created: 2026-10-19
#
# API keys use the format tg_<43-char-random> so the authenticator can route
# them without a store lookup. Only hashes are stored; the plaintext is shown
# once at creation. Every key is bound to one user and one tenant.

from __future__ import annotations

import logging
import secrets
from datetime import datetime

from toolgate.api.oauth2.models import APIKeyRecord, utcnow
from toolgate.api.oauth2.storage import CredentialStore
from toolgate.auth.authenticator import API_KEY_PREFIX, Authenticator
from toolgate.hashing import generate_token
from toolgate.security.audit import AuditLogger, null_audit_logger

logger = logging.getLogger(__name__)

_DISPLAY_PREFIX_LEN = len(API_KEY_PREFIX) + 8


class APIKeyManager:
    """API key lifecycle on top of the credential store.

    Revocation invalidates the authenticator's cache entry in the same call,
    so a revoked key stops working on the next request.
    """

    def __init__(
        self,
        store: CredentialStore,
        authenticator: Authenticator,
        *,
        valid_scopes: frozenset[str] | None = None,
        audit: AuditLogger | None = None,
    ):
        self.store = store
        self.authenticator = authenticator
        self.valid_scopes = valid_scopes or frozenset({"mcp:full"})
        self.audit = audit or null_audit_logger()

    async def create(
        self,
        user_id: str,
        tenant_id: str,
        name: str,
        scopes: list[str] | None = None,
        expires_at: datetime | None = None,
    ) -> tuple[APIKeyRecord, str]:
        """Create a new API key. Returns (record, plaintext_key)."""
        if not name:
            raise ValueError("API key name is required")
        if not tenant_id:
            raise ValueError("API keys must be bound to a tenant")
        if scopes is None:
            scopes = ["mcp:full"]
        invalid = set(scopes) - self.valid_scopes
        if invalid:
            raise ValueError(f"Invalid scopes: {sorted(invalid)}")
        if expires_at is not None and expires_at <= utcnow():
            raise ValueError("expires_at must be in the future")

        plaintext = generate_token(32, prefix=API_KEY_PREFIX)
        record = APIKeyRecord(
            id=secrets.token_hex(8),
            user_id=user_id,
            tenant_id=tenant_id,
            name=name,
            key_hash=self.authenticator.hash(plaintext),
            prefix=plaintext[:_DISPLAY_PREFIX_LEN],
            scopes=list(scopes),
            expires_at=expires_at,
        )
        await self.store.create_api_key(record)
        self.audit.credential_event(
            "api_key_created", actor=user_id, target=f"key:{record.id}",
            key_name=name, tenant_id=tenant_id, scopes=list(scopes),
        )
        return record, plaintext

    async def revoke(self, key_id: str, *, actor: str = "") -> bool:
        """Revoke an API key by ID. Returns True if found and revoked."""
        current = await self.store.get_api_key(key_id)
        if current is None:
            return False
        try:
            record = await self.store.revoke_api_key(key_id)
        finally:
            # Also on a failed write: the key is refused until the entry ages out.
            self.authenticator.invalidate(current.key_hash)
        if record is None:
            return False
        self.audit.credential_event(
            "api_key_revoked", actor=actor or record.user_id, target=f"key:{key_id}",
            key_name=record.name,
        )
        return True

    async def rotate(self, key_id: str, *, actor: str = "") -> tuple[APIKeyRecord, str] | None:
        """Revoke an existing key and create a new one with the same name/tenant/scopes."""
        old = await self.store.get_api_key(key_id)
        if old is None or old.revoked_at is not None:
            return None
        if not await self.revoke(key_id, actor=actor):
            return None
        expires_at = old.expires_at if old.expires_at and old.expires_at > utcnow() else None
        return await self.create(
            old.user_id, old.tenant_id, old.name, scopes=old.scopes, expires_at=expires_at
        )

    async def list_keys(self, user_id: str | None = None) -> list[APIKeyRecord]:
        """Active (non-revoked) keys, newest first. No secrets exposed."""
        records = await self.store.list_api_keys(user_id)
        active = [r for r in records if r.revoked_at is None]
        return sorted(active, key=lambda r: r.created_at, reverse=True)

    async def get(self, key_id: str) -> APIKeyRecord | None:
        return await self.store.get_api_key(key_id)
