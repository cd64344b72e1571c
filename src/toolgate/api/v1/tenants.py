# Tenant tools: list/select/clear/current, plus the tool dispatch entry point.
# Created: 2026-10-19
#
# Every route goes through the gateway, so every response carries the
# Mcp-Session-Id header. Domain failures come back as ok=False results with
# HTTP 200.

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from toolgate.api.deps import get_services
from toolgate.api.gateway import GatewayRequest, gateway
from toolgate.api.services import Services
from toolgate.api.v1.schemas.tenants import SelectTenantRequest, TenantInfo, ToolResponse
from toolgate.directory import Tenant
from toolgate.session.context import NotFoundError, ToolError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mcp", tags=["Tenants"])


def _ok(**result: Any) -> ToolResponse:
    return ToolResponse(ok=True, result=result)


def _failed(exc: ToolError) -> ToolResponse:
    return ToolResponse(ok=False, error=exc.to_dict())


def _tenant(tenant: Tenant, selected: bool) -> dict[str, Any]:
    info = TenantInfo(id=tenant.id, name=tenant.name, slug=tenant.slug, selected=selected)
    return info.model_dump()


@router.get("/tenants", response_model=ToolResponse)
async def list_tenants(
    gw: GatewayRequest = Depends(gateway),
    services: Services = Depends(get_services),
):
    """Tenants visible to this session. API keys see only their bound tenant."""
    context = gw.context
    current = context.tenant_id
    if context.is_bound:
        tenant = await services.tenants.get_tenant(current or "")
        tenants = [tenant] if tenant is not None else []
    else:
        tenants = await services.tenants.list_tenants()
    items = [_tenant(t, t.id == current) for t in tenants]
    return _ok(tenants=items, auth_mode=context.auth_mode.value, selected_tenant_id=current)


@router.post("/tenants/select", response_model=ToolResponse)
async def select_tenant(
    body: SelectTenantRequest,
    gw: GatewayRequest = Depends(gateway),
    services: Services = Depends(get_services),
):
    try:
        selection = await services.sessions.select(gw.context, body.tenant_id, slug=body.slug)
    except ToolError as exc:
        return _failed(exc)
    tenant = selection.tenant
    return _ok(
        tenant=_tenant(tenant, True),
        already_scoped=selection.already_scoped,
        message=selection.message,
    )


@router.delete("/tenants/selection", response_model=ToolResponse)
async def clear_selection(
    gw: GatewayRequest = Depends(gateway),
    services: Services = Depends(get_services),
):
    if gw.context.is_bound:
        return _ok(cleared=False, message="API key is bound to its tenant")
    services.sessions.clear(gw.session_id)
    return _ok(cleared=True)


@router.get("/tenants/current", response_model=ToolResponse)
async def current_tenant(
    gw: GatewayRequest = Depends(gateway),
    services: Services = Depends(get_services),
):
    try:
        tenant_id = gw.context.require_tenant()
    except ToolError as exc:
        return _failed(exc)
    tenant = await services.tenants.get_tenant(tenant_id)
    if tenant is None:
        return _failed(NotFoundError(f"Tenant {tenant_id} not found", field="tenant_id"))
    return _ok(tenant=_tenant(tenant, True))


@router.post("", response_model=ToolResponse)
async def dispatch(
    payload: dict[str, Any] | None = Body(default=None),
    gw: GatewayRequest = Depends(gateway),
    services: Services = Depends(get_services),
):
    """Hand the call to the tool dispatcher with principal and context attached."""
    try:
        result = await services.dispatcher(gw.principal, gw.context, payload or {})
    except ToolError as exc:
        return _failed(exc)
    return ToolResponse(ok=True, result=result)
