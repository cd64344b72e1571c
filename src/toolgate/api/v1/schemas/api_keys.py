# API key schemas.
# Created: 2026-10-19

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CreateKeyRequest(BaseModel):
    """Create a new API key bound to one tenant."""

    name: str = Field(..., min_length=1, max_length=100)
    tenant_id: str = Field(..., min_length=1)
    scopes: list[str] | None = None
    expires_at: datetime | None = None


class APIKeyInfo(BaseModel):
    """API key info (no secrets)."""

    id: str
    name: str
    tenant_id: str
    prefix: str
    scopes: list[str]
    created_at: datetime
    last_used_at: datetime | None = None
    expires_at: datetime | None = None


class APIKeyCreatedResponse(APIKeyInfo):
    """Response when a new API key is created; plaintext shown once."""

    key: str
