# Bearer credential verification for API keys and OAuth access tokens.
# Created: 2026-10-19
#
# API keys carry the tg_ prefix; anything else is treated as an opaque OAuth
# access token. The prefix only picks the lookup path; nothing is trusted until
# the hash is found in the credential store.
#
# Results (positive and negative) are cached by credential hash. A cache hit
# still re-checks the revoked/expiry fields carried in the entry. Callers that
# revoke or rotate a credential must call invalidate() in the same operation;
# it leaves a tombstone rather than deleting the entry.

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from toolgate.api.oauth2.models import utcnow
from toolgate.api.oauth2.storage import CredentialStore
from toolgate.auth.models import AuthMode, InvalidTokenError, Principal
from toolgate.background import BackgroundWriter
from toolgate.cache import ShardedCache
from toolgate.directory import UserDirectory
from toolgate.hashing import hash_secret, short_hash

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "tg_"


@dataclass(frozen=True)
class CachedCredential:
    """Cache entry. ``principal is None`` marks a negative result."""

    principal: Principal | None
    expires_at: datetime | None = None
    revoked: bool = False

    def usable(self, now: datetime) -> bool:
        if self.principal is None or self.revoked:
            return False
        return self.expires_at is None or now < self.expires_at


def classify_credential(raw: str) -> AuthMode:
    """Purely syntactic: which lookup path a raw bearer value takes."""
    return AuthMode.API_KEY if raw.startswith(API_KEY_PREFIX) else AuthMode.OAUTH


class Authenticator:
    """Unified ``verify()`` over both credential kinds."""

    def __init__(
        self,
        store: CredentialStore,
        users: UserDirectory,
        *,
        pepper: str = "",
        cache: ShardedCache[CachedCredential] | None = None,
        background: BackgroundWriter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.users = users
        self._pepper = pepper
        self.cache: ShardedCache[CachedCredential] = cache or ShardedCache(ttl=300.0)
        self.background = background or BackgroundWriter()
        self._clock = clock

    def hash(self, raw: str) -> str:
        return hash_secret(raw, self._pepper)

    async def verify(self, raw: str) -> Principal:
        """Return the principal for *raw* or raise ``InvalidTokenError``.

        ``CredentialStoreError`` from the store propagates unchanged.
        """
        if not raw:
            raise InvalidTokenError()

        credential_hash = self.hash(raw)
        now = self._clock()

        cached = self.cache.get(credential_hash)
        if cached is not None:
            if cached.usable(now):
                return cached.principal  # type: ignore[return-value]
            if cached.principal is not None:
                # Went stale since it was cached; drop it.
                self.cache.invalidate(credential_hash)
            raise InvalidTokenError()

        if classify_credential(raw) is AuthMode.API_KEY:
            entry = await self._load_api_key(credential_hash, now)
        else:
            entry = await self._load_oauth_token(credential_hash, now)

        # A revocation that landed during the lookup left a tombstone; it wins.
        entry = self.cache.put_if_absent(credential_hash, entry)
        if not entry.usable(now):
            raise InvalidTokenError()
        return entry.principal  # type: ignore[return-value]

    async def _load_api_key(self, key_hash: str, now: datetime) -> CachedCredential:
        record = await self.store.get_api_key_by_hash(key_hash)
        if record is None or not record.is_usable(now):
            logger.debug("API key %s rejected", short_hash(key_hash))
            return CachedCredential(principal=None)

        user = await self.users.get_user(record.user_id)
        if user is None or not self.users.is_active(user):
            logger.debug("API key %s belongs to missing/inactive user", short_hash(key_hash))
            return CachedCredential(principal=None)

        principal = Principal(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            auth_mode=AuthMode.API_KEY,
            scopes=tuple(record.scopes),
            expires_at=record.expires_at,
            tenant_id=record.tenant_id,
            credential_id=record.id,
        )
        self.background.submit(
            self.store.touch_api_key(record.id, now),
            description=f"last-used update for key {record.id}",
        )
        return CachedCredential(principal=principal, expires_at=record.expires_at)

    async def _load_oauth_token(self, access_hash: str, now: datetime) -> CachedCredential:
        token = await self.store.get_token_by_access_hash(access_hash)
        if token is None or not token.access_valid(now):
            logger.debug("OAuth token %s rejected", short_hash(access_hash))
            return CachedCredential(principal=None)

        user = await self.users.get_user(token.user_id)
        if user is None or not self.users.is_active(user):
            return CachedCredential(principal=None)

        principal = Principal(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            auth_mode=AuthMode.OAUTH,
            scopes=tuple(token.scope.split()),
            expires_at=token.access_expires_at,
            credential_id=token.id,
        )
        return CachedCredential(principal=principal, expires_at=token.access_expires_at)

    def invalidate(self, credential_hash: str) -> bool:
        """Replace the cache entry for a revoked credential with a negative tombstone.

        A plain delete would let a ``verify()`` that read the store before the
        revocation re-insert its positive result afterwards. Returns True if
        an entry was cached.
        """
        cached = credential_hash in self.cache
        self.cache.put(credential_hash, CachedCredential(principal=None, revoked=True))
        return cached

    def invalidate_raw(self, raw: str) -> bool:
        return self.invalidate(self.hash(raw))
