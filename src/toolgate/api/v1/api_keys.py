# API keys router: CRUD endpoints for long-lived, tenant-bound API keys.
# Created: 2026-10-19

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from toolgate.api.deps import get_services, require_scope
from toolgate.api.gateway import authenticate
from toolgate.api.oauth2.models import APIKeyRecord
from toolgate.api.services import Services
from toolgate.api.v1.schemas.api_keys import (
    APIKeyCreatedResponse,
    APIKeyInfo,
    CreateKeyRequest,
)
from toolgate.auth.models import Principal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["API Keys"], dependencies=[Depends(require_scope("mcp:full"))])


def _info(record: APIKeyRecord) -> APIKeyInfo:
    return APIKeyInfo(
        id=record.id,
        name=record.name,
        tenant_id=record.tenant_id,
        prefix=record.prefix,
        scopes=record.scopes,
        created_at=record.created_at,
        last_used_at=record.last_used_at,
        expires_at=record.expires_at,
    )


def _created(record: APIKeyRecord, plaintext: str) -> APIKeyCreatedResponse:
    return APIKeyCreatedResponse(key=plaintext, **_info(record).model_dump())


async def _owned_key(services: Services, principal: Principal, key_id: str) -> APIKeyRecord:
    record = await services.api_keys.get(key_id)
    if (
        record is None
        or record.revoked_at is not None
        or (record.user_id != principal.user_id and principal.role != "admin")
    ):
        raise HTTPException(status_code=404, detail="API key not found or already revoked")
    return record


@router.post("/auth/api-keys", response_model=APIKeyCreatedResponse, status_code=201)
async def create_api_key(
    body: CreateKeyRequest,
    principal: Principal = Depends(authenticate),
    services: Services = Depends(get_services),
):
    """Create a new API key. The plaintext key is returned only once."""
    if await services.tenants.get_tenant(body.tenant_id) is None:
        raise HTTPException(status_code=404, detail=f"Tenant {body.tenant_id} not found")
    try:
        record, plaintext = await services.api_keys.create(
            principal.user_id,
            body.tenant_id,
            body.name,
            scopes=body.scopes,
            expires_at=body.expires_at,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _created(record, plaintext)


@router.get("/auth/api-keys", response_model=list[APIKeyInfo])
async def list_api_keys(
    principal: Principal = Depends(authenticate),
    services: Services = Depends(get_services),
):
    """List active API keys (no secrets exposed). Admins see every user's keys."""
    user_id = None if principal.role == "admin" else principal.user_id
    return [_info(k) for k in await services.api_keys.list_keys(user_id)]


@router.delete("/auth/api-keys/{key_id}")
async def revoke_api_key(
    key_id: str,
    principal: Principal = Depends(authenticate),
    services: Services = Depends(get_services),
):
    """Revoke an API key. Takes effect on the next request that presents it."""
    await _owned_key(services, principal, key_id)
    if not await services.api_keys.revoke(key_id, actor=principal.user_id):
        raise HTTPException(status_code=404, detail="API key not found or already revoked")
    return {"status": "ok"}


@router.post("/auth/api-keys/{key_id}/rotate", response_model=APIKeyCreatedResponse)
async def rotate_api_key(
    key_id: str,
    principal: Principal = Depends(authenticate),
    services: Services = Depends(get_services),
):
    """Rotate an API key: revoke old + create new with same name, tenant and scopes."""
    await _owned_key(services, principal, key_id)
    result = await services.api_keys.rotate(key_id, actor=principal.user_id)
    if result is None:
        raise HTTPException(status_code=404, detail="API key not found or already revoked")
    return _created(*result)
