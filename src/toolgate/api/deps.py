# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-19

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from toolgate.api.services import Services
from toolgate.auth.models import Principal
from toolgate.security.rate_limiter import RateLimiter


def get_services(request: Request) -> Services:
    """The app's component container (set by ``create_api_app``)."""
    return request.app.state.services


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limited(request: Request, limiter: RateLimiter) -> JSONResponse | None:
    """Return a 429 response if *request*'s client IP is over its budget."""
    info = limiter.check(client_ip(request))
    if info.allowed:
        return None
    return JSONResponse(
        status_code=429,
        content={"error": "slow_down", "error_description": "Too many requests"},
        headers=info.headers(),
    )


def require_scope(*scopes: str):
    """FastAPI dependency that checks the caller's credential scopes.

    Usage::

        @router.post("/auth/api-keys", dependencies=[Depends(require_scope("mcp:full"))])
        async def create_api_key(...): ...

    The principal must hold at least one of *scopes*. Role ``admin`` passes
    every scope check.
    """
    from toolgate.api.gateway import authenticate

    async def _check(principal: Principal = Depends(authenticate)) -> None:
        if principal.role == "admin":
            return
        if not principal.has_scope(*scopes):
            raise HTTPException(
                status_code=403,
                detail=f"Credential missing required scope: {' or '.join(sorted(scopes))}",
            )

    return _check
