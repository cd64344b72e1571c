# Discovery documents: RFC 9728 protected resource metadata, RFC 8414
# authorization server metadata, and an empty JWKS (tokens are opaque).
# Created: 2026-10-19
#
# MCP clients try several spellings of the discovery paths (root, suffixed
# with the resource path, nested under the resource); all serve the same body.

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from toolgate.api.deps import get_services
from toolgate.api.services import Services

router = APIRouter(tags=["Discovery"])

_NO_STORE = {"Cache-Control": "no-store"}


@router.get("/.well-known/oauth-protected-resource")
@router.get("/.well-known/oauth-protected-resource/mcp", include_in_schema=False)
@router.get("/mcp/.well-known/oauth-protected-resource", include_in_schema=False)
async def protected_resource_metadata(services: Services = Depends(get_services)):
    return JSONResponse(services.oauth_server.protected_resource_metadata(), headers=_NO_STORE)


@router.get("/.well-known/oauth-authorization-server")
@router.get("/.well-known/oauth-authorization-server/mcp", include_in_schema=False)
@router.get("/mcp/.well-known/oauth-authorization-server", include_in_schema=False)
@router.get("/.well-known/openid-configuration", include_in_schema=False)
@router.get("/mcp/.well-known/openid-configuration", include_in_schema=False)
async def authorization_server_metadata(services: Services = Depends(get_services)):
    return JSONResponse(services.oauth_server.authorization_server_metadata(), headers=_NO_STORE)


@router.get("/.well-known/jwks.json")
async def jwks():
    return JSONResponse({"keys": []}, headers=_NO_STORE)
