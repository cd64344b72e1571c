# OAuth2 schemas.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Dynamic client registration request (RFC 7591 subset)."""

    client_name: str = ""
    redirect_uris: list[str] = Field(default_factory=list)
    token_endpoint_auth_method: str | None = None
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    scope: str | None = None


class RegisterResponse(BaseModel):
    """Registered client. ``client_secret`` is present only at registration."""

    client_id: str
    client_name: str
    redirect_uris: list[str]
    token_endpoint_auth_method: str
    grant_types: list[str]
    response_types: list[str]
    scope: str
    client_id_issued_at: int
    client_secret: str | None = None
    client_secret_expires_at: int | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: str = ""
