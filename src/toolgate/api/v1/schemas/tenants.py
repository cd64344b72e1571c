# Tenant tool schemas.
# Created: 2026-10-19

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class SelectTenantRequest(BaseModel):
    """Either field identifies the tenant; tenant_id wins when both are set."""

    tenant_id: str = ""
    slug: str = ""


class TenantInfo(BaseModel):
    id: str
    name: str
    slug: str = ""
    selected: bool = False


class ToolResponse(BaseModel):
    """Envelope for every tool result. Domain failures are ``ok=False``, not HTTP errors."""

    ok: bool
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
