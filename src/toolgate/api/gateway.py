# Request Gateway: bearer extraction, unauthorized challenge, session resolution.
# Created: 2026-10-19
#
# authenticate() is the resource-server check shared by every protected
# route. gateway() adds the Mcp-Session-Id handshake on top and hands the
# route a GatewayRequest; routes pass its principal and context on as
# ordinary arguments.

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, Response

from toolgate.api.deps import get_services
from toolgate.api.oauth2.storage import CredentialStoreError
from toolgate.api.services import Services
from toolgate.auth.models import InvalidTokenError, Principal
from toolgate.config import Settings
from toolgate.session.context import ExecutionContext

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


def extract_bearer(authorization: str | None) -> str | None:
    """Token from an ``Authorization: Bearer <token>`` header, else None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def www_authenticate(settings: Settings) -> str:
    return (
        f'Bearer resource_metadata="{settings.resource_metadata_url}", '
        f'scope="{settings.default_scope}"'
    )


def unauthorized(settings: Settings) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": www_authenticate(settings)},
    )


def _server_error() -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"error": "server_error", "error_description": "Credential store unavailable"},
    )


async def authenticate(request: Request, services: Services = Depends(get_services)) -> Principal:
    """Verify the bearer credential or fail with 401 + WWW-Authenticate."""
    raw = extract_bearer(request.headers.get("authorization"))
    if raw is None:
        raise unauthorized(services.settings)
    try:
        principal = await services.authenticator.verify(raw)
    except InvalidTokenError:
        raise unauthorized(services.settings) from None
    except CredentialStoreError:
        logger.exception("Credential lookup failed")
        raise _server_error() from None
    request.state.principal = principal
    return principal


@dataclass(frozen=True)
class GatewayRequest:
    """What a protected tool route receives."""

    principal: Principal
    context: ExecutionContext
    request_id: str

    @property
    def session_id(self) -> str:
        return self.context.session_id


async def gateway(
    request: Request,
    response: Response,
    principal: Principal = Depends(authenticate),
    services: Services = Depends(get_services),
) -> GatewayRequest:
    """Authenticate, then resolve the session's execution context."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    try:
        context = await services.sessions.resolve(
            request.headers.get(SESSION_HEADER),
            principal,
            request_id=request_id,
            user_agent=request.headers.get("user-agent", ""),
        )
    except CredentialStoreError:
        logger.exception("Session restore failed")
        raise _server_error() from None
    response.headers[SESSION_HEADER] = context.session_id
    return GatewayRequest(principal=principal, context=context, request_id=request_id)
