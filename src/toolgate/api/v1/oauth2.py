# OAuth2 router: register, authorize (login form), token, revoke.
# Created: 2026-10-19

from __future__ import annotations

import base64
import binascii
import html
import json
import logging
from urllib.parse import unquote_plus

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

from toolgate.api.deps import get_services, rate_limited
from toolgate.api.oauth2 import errors
from toolgate.api.oauth2.errors import OAuthError
from toolgate.api.oauth2.server import (
    AuthorizationRequest,
    LoginFailed,
    error_redirect,
    redirect_with,
)
from toolgate.api.oauth2.storage import CredentialStoreError
from toolgate.api.services import Services
from toolgate.api.v1.schemas.oauth2 import RegisterRequest, RegisterResponse, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_LOGIN_HTML = """<!DOCTYPE html>
<html><head><meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Sign in to toolgate</title>
<style>
* {{ box-sizing: border-box; margin: 0; padding: 0; }}
body {{ font-family: system-ui; background: #f3f4f6; min-height: 100vh;
  display: flex; align-items: center; justify-content: center; }}
.container {{ background: white; padding: 32px; border-radius: 12px; width: 100%; max-width: 400px; }}
h1 {{ font-size: 24px; margin-bottom: 8px; }}
.subtitle {{ color: #6b7280; margin-bottom: 24px; }}
.error {{ color: #dc2626; background: #fef2f2; padding: 12px; border-radius: 6px; margin-bottom: 16px; }}
.scope {{ background: #f3f4f6; padding: 12px; border-radius: 6px; margin-bottom: 16px; font-size: 14px; }}
label {{ display: block; font-size: 14px; margin-bottom: 6px; }}
input[type="email"], input[type="password"] {{ width: 100%; padding: 10px 12px;
  border: 1px solid #d1d5db; border-radius: 6px; font-size: 16px; margin-bottom: 16px; }}
.btn {{ width: 100%; padding: 12px; border: none; border-radius: 6px; font-size: 16px; cursor: pointer; }}
.allow {{ background: #2563eb; color: white; }}
.deny {{ background: #e5e7eb; color: #374151; margin-top: 8px; }}
</style></head><body>
<div class="container">
<h1>Sign in to toolgate</h1>
<p class="subtitle"><strong>{client_name}</strong> wants to access your account</p>
{error_html}
<div class="scope"><strong>Requested access:</strong> {scope}</div>
<form method="POST" action="/authorize">
<input type="hidden" name="response_type" value="{response_type}">
<input type="hidden" name="client_id" value="{client_id}">
<input type="hidden" name="redirect_uri" value="{redirect_uri}">
<input type="hidden" name="scope" value="{scope}">
<input type="hidden" name="state" value="{state}">
<input type="hidden" name="code_challenge" value="{code_challenge}">
<input type="hidden" name="code_challenge_method" value="{code_challenge_method}">
<label for="email">Email</label>
<input type="email" id="email" name="email" autofocus>
<label for="password">Password</label>
<input type="password" id="password" name="password">
<button type="submit" name="action" value="allow" class="btn allow">Sign in and Authorize</button>
<button type="submit" name="action" value="deny" class="btn deny">Cancel</button>
</form></div></body></html>"""


def render_login_page(req: AuthorizationRequest, client_name: str, error: str = "") -> HTMLResponse:
    e = html.escape
    error_html = f'<div class="error">{e(error)}</div>' if error else ""
    page = _LOGIN_HTML.format(
        client_name=e(client_name),
        error_html=error_html,
        response_type=e(req.response_type),
        client_id=e(req.client_id),
        redirect_uri=e(req.redirect_uri),
        scope=e(req.scope),
        state=e(req.state),
        code_challenge=e(req.code_challenge),
        code_challenge_method=e(req.code_challenge_method),
    )
    return HTMLResponse(page, headers={"Cache-Control": "no-store", "X-Frame-Options": "DENY"})


def oauth_error_response(exc: OAuthError) -> JSONResponse:
    headers = dict(_NO_STORE)
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="toolgate"'
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _server_error(description: str) -> JSONResponse:
    return oauth_error_response(
        OAuthError(errors.SERVER_ERROR, description, status_code=500, redirectable=False)
    )


def parse_basic_auth(header: str | None) -> tuple[str, str] | None:
    """``(client_id, client_secret)`` from an HTTP Basic header.

    Both parts are form-urlencoded before base64 (RFC 6749 2.3.1), so ``+`` is a space.
    """
    if not header or not header.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(header[len("Basic "):], validate=True).decode()
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, secret = decoded.partition(":")
    if not sep:
        return None
    return unquote_plus(client_id), unquote_plus(secret)


def _authorization_request(params) -> AuthorizationRequest:
    return AuthorizationRequest(
        response_type=str(params.get("response_type", "")),
        client_id=str(params.get("client_id", "")),
        redirect_uri=str(params.get("redirect_uri", "")),
        scope=str(params.get("scope", "")),
        state=str(params.get("state", "")),
        code_challenge=str(params.get("code_challenge", "")),
        code_challenge_method=str(params.get("code_challenge_method", "")),
    )


# ---------------------------------------------------------------------------
# Dynamic client registration
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201, response_model=RegisterResponse)
async def register_client(request: Request, services: Services = Depends(get_services)):
    """RFC 7591 dynamic client registration. The secret is returned only here."""
    limited = rate_limited(request, services.register_limiter)
    if limited is not None:
        return limited

    try:
        body = RegisterRequest.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return oauth_error_response(OAuthError(errors.INVALID_REQUEST, "Invalid request body"))

    try:
        data = await services.oauth_server.register_client(
            body.client_name,
            body.redirect_uris,
            token_endpoint_auth_method=body.token_endpoint_auth_method,
            grant_types=body.grant_types,
            response_types=body.response_types,
            scope=body.scope,
        )
    except OAuthError as exc:
        return oauth_error_response(exc)
    except CredentialStoreError:
        logger.exception("Client registration failed")
        return _server_error("Failed to register client")
    return JSONResponse(status_code=201, content=data, headers=_NO_STORE)


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


async def _validated(services: Services, req: AuthorizationRequest):
    """(client, None) or (None, error response) for an authorize request."""
    try:
        return await services.oauth_server.validate_authorization_request(req), None
    except OAuthError as exc:
        if not exc.redirectable:
            return None, oauth_error_response(exc)
        return None, RedirectResponse(error_redirect(req.redirect_uri, exc, req.state), 302)


@router.get("/authorize")
async def authorize(request: Request, services: Services = Depends(get_services)):
    """Validate the request and show the login form."""
    req = _authorization_request(request.query_params)
    try:
        client, error = await _validated(services, req)
    except CredentialStoreError:
        logger.exception("Authorize lookup failed")
        return _server_error("Failed to load client")
    if error is not None:
        return error
    return render_login_page(req, client.name)


@router.post("/authorize")
async def authorize_submit(request: Request, services: Services = Depends(get_services)):
    """Process the login form: issue a code, re-render on bad credentials, or cancel."""
    limited = rate_limited(request, services.login_limiter)
    if limited is not None:
        return limited

    form = await request.form()
    req = _authorization_request(form)
    try:
        client, error = await _validated(services, req)
        if error is not None:
            return error

        if form.get("action", "allow") == "deny":
            denied = OAuthError(errors.ACCESS_DENIED, "The user denied the request")
            return RedirectResponse(error_redirect(req.redirect_uri, denied, req.state), 302)

        try:
            user = await services.oauth_server.authenticate_user(
                str(form.get("email", "")), str(form.get("password", ""))
            )
        except LoginFailed as exc:
            return render_login_page(req, client.name, str(exc))

        code = await services.oauth_server.issue_code(client, user, req)
    except CredentialStoreError:
        logger.exception("Authorization code issuance failed")
        failed = OAuthError(errors.SERVER_ERROR, "Failed to create authorization code")
        if req.redirect_uri:
            return RedirectResponse(error_redirect(req.redirect_uri, failed, req.state), 302)
        return _server_error(failed.description)

    logger.info("Issued authorization code for client %s", client.client_id)
    return RedirectResponse(redirect_with(req.redirect_uri, {"code": code, "state": req.state}), 302)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@router.post("/token", response_model=TokenResponse)
async def token(request: Request, services: Services = Depends(get_services)):
    """authorization_code and refresh_token grants (form-encoded)."""
    limited = rate_limited(request, services.token_limiter)
    if limited is not None:
        return limited

    form = await request.form()
    client_id = str(form.get("client_id", ""))
    client_secret = form.get("client_secret")
    basic = parse_basic_auth(request.headers.get("authorization"))
    if basic is not None:
        client_id, client_secret = basic

    server = services.oauth_server
    grant_type = form.get("grant_type", "")
    try:
        if grant_type == "authorization_code":
            result = await server.exchange_code(
                code=str(form.get("code", "")),
                client_id=client_id,
                client_secret=str(client_secret) if client_secret else None,
                redirect_uri=str(form.get("redirect_uri", "")),
                code_verifier=str(form.get("code_verifier", "")),
            )
        elif grant_type == "refresh_token":
            result = await server.refresh(
                refresh_token=str(form.get("refresh_token", "")),
                client_id=client_id,
                client_secret=str(client_secret) if client_secret else None,
            )
        else:
            raise OAuthError(errors.UNSUPPORTED_GRANT_TYPE, "Unsupported grant_type")
    except OAuthError as exc:
        logger.info("Token request rejected: %s (%s)", exc.error, exc.description)
        return oauth_error_response(exc)
    except CredentialStoreError:
        logger.exception("Token request failed")
        return _server_error("Failed to process token request")

    return JSONResponse(result, headers=_NO_STORE)


@router.post("/revoke")
async def revoke(request: Request, services: Services = Depends(get_services)):
    """RFC 7009: always 200, whether or not the token was known."""
    form = await request.form()
    token_value = str(form.get("token", ""))
    if not token_value:
        return oauth_error_response(OAuthError(errors.INVALID_REQUEST, "token is required"))
    try:
        await services.oauth_server.revoke(token_value)
    except CredentialStoreError:
        logger.exception("Token revocation failed")
        return _server_error("Failed to revoke token")
    return JSONResponse({}, headers=_NO_STORE)
