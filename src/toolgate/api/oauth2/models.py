# Credential store records.
# Created: 2026-10-19
#
# Every secret-bearing field holds a one-way hash; plaintext values exist only
# in the response that first hands them out.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class OAuthClient:
    """Dynamically registered OAuth client."""

    client_id: str
    name: str
    redirect_uris: list[str] = field(default_factory=list)
    allowed_scopes: list[str] = field(default_factory=lambda: ["mcp:full"])
    secret_hash: str | None = None  # None for public clients
    token_endpoint_auth_method: str = "client_secret_post"
    grant_types: list[str] = field(default_factory=lambda: ["authorization_code", "refresh_token"])
    response_types: list[str] = field(default_factory=lambda: ["code"])
    created_at: datetime = field(default_factory=utcnow)

    @property
    def confidential(self) -> bool:
        return self.secret_hash is not None


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code bound to a PKCE challenge."""

    code_hash: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: str
    pkce_challenge: str | None
    pkce_method: str | None  # only "S256"
    expires_at: datetime
    used: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class OAuthToken:
    """Access + refresh token pair (hashes only)."""

    id: str
    client_id: str
    user_id: str
    access_token_hash: str
    scope: str
    access_expires_at: datetime
    refresh_token_hash: str | None = None
    refresh_expires_at: datetime | None = None
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def access_valid(self, now: datetime | None = None) -> bool:
        return not self.revoked and (now or utcnow()) < self.access_expires_at

    def refresh_valid(self, now: datetime | None = None) -> bool:
        if self.revoked or self.refresh_token_hash is None:
            return False
        return self.refresh_expires_at is None or (now or utcnow()) < self.refresh_expires_at


@dataclass
class APIKeyRecord:
    """Long-lived API key bound to one user and one tenant."""

    id: str
    user_id: str
    tenant_id: str
    name: str
    key_hash: str
    prefix: str  # display prefix, e.g. "tg_AbC12345"
    scopes: list[str] = field(default_factory=lambda: ["mcp:full"])
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    last_used_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def is_usable(self, now: datetime | None = None) -> bool:
        if self.revoked_at is not None:
            return False
        return self.expires_at is None or (now or utcnow()) < self.expires_at


@dataclass
class SessionScope:
    """Durable tenant selection for a transport session."""

    session_id: str
    user_id: str
    selected_tenant_id: str | None = None
    updated_at: datetime = field(default_factory=utcnow)
