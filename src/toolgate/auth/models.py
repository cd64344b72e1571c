# Verified-credential types.
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AuthMode(str, Enum):
    """How a bearer credential was issued."""

    API_KEY = "api_key"
    OAUTH = "oauth"


@dataclass(frozen=True)
class Principal:
    """Normalized result of a successful ``Authenticator.verify()``.

    ``tenant_id`` is only set for API keys, which are bound to one tenant at
    creation. OAuth principals pick a tenant per session.
    """

    user_id: str
    email: str
    name: str
    role: str
    auth_mode: AuthMode
    scopes: tuple[str, ...] = field(default_factory=tuple)
    expires_at: datetime | None = None
    tenant_id: str | None = None
    credential_id: str = ""  # API key id or OAuth token row id

    def has_scope(self, *scopes: str) -> bool:
        return bool(set(self.scopes) & set(scopes))


class AuthError(Exception):
    """Base class for bearer-verification failures."""


class InvalidTokenError(AuthError):
    """The credential is unknown, revoked or expired.

    The message is deliberately the same for every cause.
    """

    def __init__(self) -> None:
        super().__init__("invalid token")
