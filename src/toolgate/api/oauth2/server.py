# OAuth 2.1 Authorization Server: dynamic registration, authorization code
# + PKCE, refresh token rotation.
# Created: 2026-10-19
#
# Per authorization attempt: REQUESTED -> CHALLENGED (login form) ->
# CODE_ISSUED -> REDEEMED | EXPIRED. Codes and tokens are stored as hashes and
# a code is burned on its first redemption attempt, whatever the outcome.

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from toolgate.api.oauth2 import errors
from toolgate.api.oauth2.errors import OAuthError
from toolgate.api.oauth2.models import AuthorizationCode, OAuthClient, OAuthToken, utcnow
from toolgate.api.oauth2.pkce import SUPPORTED_METHODS, verify_pkce
from toolgate.api.oauth2.storage import CredentialStore
from toolgate.auth.authenticator import Authenticator
from toolgate.config import Settings
from toolgate.directory import User, UserDirectory
from toolgate.hashing import generate_token, hash_secret, secrets_match, short_hash
from toolgate.security.audit import AuditLogger, AuditSeverity, null_audit_logger

logger = logging.getLogger(__name__)

TOKEN_AUTH_METHODS = ("client_secret_post", "client_secret_basic", "none")
ALWAYS_ALLOWED_SCOPES = frozenset({"offline_access"})


@dataclass
class AuthorizationRequest:
    """Parameters of GET /authorize, echoed back as hidden fields on the login form."""

    response_type: str = ""
    client_id: str = ""
    redirect_uri: str = ""
    scope: str = ""
    state: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""


class LoginFailed(Exception):
    """Login form rejected; the message is shown on the re-rendered form."""


def redirect_with(uri: str, params: dict[str, str]) -> str:
    """Append *params* to *uri*, keeping any query it already carries."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v)
    return urlunsplit(parts._replace(query=urlencode(query)))


def error_redirect(uri: str, error: OAuthError, state: str = "") -> str:
    params = {"error": error.error, "error_description": error.description, "state": state}
    return redirect_with(uri, params)


class AuthorizationServer:
    """OAuth 2.1 authorization server backed by a ``CredentialStore``."""

    def __init__(
        self,
        store: CredentialStore,
        users: UserDirectory,
        settings: Settings,
        *,
        authenticator: Authenticator | None = None,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.users = users
        self.settings = settings
        self.authenticator = authenticator
        self.audit = audit or null_audit_logger()
        self._clock = clock

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.access_token_ttl_seconds)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.refresh_token_ttl_seconds)

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.auth_code_ttl_seconds)

    def _hash(self, value: str) -> str:
        return hash_secret(value, self.settings.secret_pepper)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def protected_resource_metadata(self) -> dict:
        return {
            "resource": self.settings.resource_url,
            "authorization_servers": [self.settings.base_url],
            "scopes_supported": [self.settings.default_scope],
            "bearer_methods_supported": ["header"],
        }

    def authorization_server_metadata(self) -> dict:
        base = self.settings.base_url
        return {
            "issuer": base,
            "authorization_endpoint": f"{base}/authorize",
            "token_endpoint": f"{base}/token",
            "registration_endpoint": f"{base}/register",
            "revocation_endpoint": f"{base}/revoke",
            "scopes_supported": list(self.settings.scopes_supported),
            "response_types_supported": ["code"],
            "response_modes_supported": ["query"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_methods_supported": list(TOKEN_AUTH_METHODS),
            "code_challenge_methods_supported": list(SUPPORTED_METHODS),
        }

    # ------------------------------------------------------------------
    # Dynamic client registration
    # ------------------------------------------------------------------

    async def register_client(
        self,
        client_name: str,
        redirect_uris: list[str],
        *,
        token_endpoint_auth_method: str | None = None,
        grant_types: list[str] | None = None,
        response_types: list[str] | None = None,
        scope: str | None = None,
    ) -> dict:
        """Register a client. The plaintext secret appears only in this return value."""
        if not client_name:
            raise OAuthError(errors.INVALID_REQUEST, "client_name is required")
        uris = [u for u in redirect_uris or [] if u]
        if not uris:
            raise OAuthError(errors.INVALID_REQUEST, "redirect_uris is required")
        for uri in uris:
            parts = urlsplit(uri)
            if not parts.scheme or parts.fragment:
                raise OAuthError(errors.INVALID_REQUEST, f"Invalid redirect_uri: {uri}")

        auth_method = token_endpoint_auth_method or "client_secret_post"
        if auth_method not in TOKEN_AUTH_METHODS:
            raise OAuthError(
                errors.INVALID_REQUEST,
                f"Unsupported token_endpoint_auth_method: {auth_method}",
            )
        grant_types = grant_types or ["authorization_code", "refresh_token"]
        response_types = response_types or ["code"]
        scope = scope or self.settings.default_scope

        client_id = generate_token(16)
        client_secret = generate_token(32) if auth_method != "none" else None

        client = OAuthClient(
            client_id=client_id,
            name=client_name,
            redirect_uris=uris,
            allowed_scopes=scope.split(),
            secret_hash=self._hash(client_secret) if client_secret else None,
            token_endpoint_auth_method=auth_method,
            grant_types=list(grant_types),
            response_types=list(response_types),
        )
        await self.store.create_client(client)
        self.audit.credential_event(
            "client_registered", actor="anonymous", target=f"client:{client_id}", name=client_name
        )
        logger.info("Registered OAuth client %s (%s)", client_name, client_id)

        response = {
            "client_id": client_id,
            "client_name": client_name,
            "redirect_uris": uris,
            "token_endpoint_auth_method": auth_method,
            "grant_types": list(grant_types),
            "response_types": list(response_types),
            "scope": scope,
            "client_id_issued_at": int(client.created_at.timestamp()),
        }
        if client_secret:
            response["client_secret"] = client_secret
            response["client_secret_expires_at"] = 0
        return response

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    async def validate_authorization_request(self, req: AuthorizationRequest) -> OAuthClient:
        """Check an authorize request. Raises ``OAuthError``.

        Client and redirect_uri problems are raised with ``redirectable=False``;
        everything after that may be delivered to the confirmed redirect_uri.
        """
        client = await self.store.get_client(req.client_id) if req.client_id else None
        if client is None:
            raise OAuthError(errors.INVALID_CLIENT, "Unknown client_id", redirectable=False)
        if req.redirect_uri not in client.redirect_uris:
            raise OAuthError(errors.INVALID_REQUEST, "Invalid redirect_uri", redirectable=False)

        if req.response_type != "code":
            raise OAuthError(
                errors.UNSUPPORTED_RESPONSE_TYPE, "Only 'code' response type is supported"
            )
        if not req.code_challenge:
            raise OAuthError(errors.INVALID_REQUEST, "code_challenge is required")
        if req.code_challenge_method not in SUPPORTED_METHODS:
            raise OAuthError(
                errors.INVALID_REQUEST, "Only S256 code_challenge_method is supported"
            )

        if req.scope:
            requested = set(req.scope.split())
            allowed = set(client.allowed_scopes) | ALWAYS_ALLOWED_SCOPES
            if not requested <= allowed:
                raise OAuthError(errors.INVALID_SCOPE, "Requested scope is not allowed")
        else:
            req.scope = " ".join(client.allowed_scopes)
        return client

    async def authenticate_user(self, email: str, password: str) -> User:
        """Login step of POST /authorize. Raises ``LoginFailed``."""
        user = await self.users.verify_credentials(email, password) if email and password else None
        if user is None:
            self.audit.credential_event(
                "login_failed", actor="anonymous", target=f"email:{email}",
                severity=AuditSeverity.WARNING,
            )
            raise LoginFailed("Invalid email or password")
        if not self.users.is_active(user):
            self.audit.credential_event(
                "login_failed", actor=user.id, target=f"email:{email}",
                severity=AuditSeverity.WARNING, reason="inactive",
            )
            raise LoginFailed("Account is not active")
        return user

    async def issue_code(self, client: OAuthClient, user: User, req: AuthorizationRequest) -> str:
        """Mint and persist an authorization code; returns the plaintext code."""
        code = generate_token(32)
        await self.store.create_code(
            AuthorizationCode(
                code_hash=self._hash(code),
                client_id=client.client_id,
                user_id=user.id,
                redirect_uri=req.redirect_uri,
                scope=req.scope,
                pkce_challenge=req.code_challenge or None,
                pkce_method=req.code_challenge_method or None,
                expires_at=self._clock() + self.code_ttl,
            )
        )
        return code

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def authenticate_client(self, client_id: str, client_secret: str | None) -> OAuthClient:
        """Shared by form-body and HTTP Basic client credentials."""
        client = await self.store.get_client(client_id) if client_id else None
        if client is None:
            raise OAuthError(errors.INVALID_CLIENT, "Unknown client", status_code=401)
        if client.confidential:
            if not client_secret or not secrets_match(
                client_secret, client.secret_hash or "", self.settings.secret_pepper
            ):
                raise OAuthError(
                    errors.INVALID_CLIENT, "Client authentication failed", status_code=401
                )
        return client

    async def exchange_code(
        self,
        *,
        code: str,
        client_id: str,
        client_secret: str | None = None,
        redirect_uri: str = "",
        code_verifier: str = "",
    ) -> dict:
        """authorization_code grant."""
        if not code:
            raise OAuthError(errors.INVALID_REQUEST, "code is required")
        if not client_id:
            raise OAuthError(errors.INVALID_REQUEST, "client_id is required")
        client = await self.authenticate_client(client_id, client_secret)

        code_hash = self._hash(code)
        auth_code = await self.store.get_code_by_hash(code_hash)
        if auth_code is None:
            raise OAuthError(errors.INVALID_GRANT, "Invalid authorization code")
        if auth_code.used:
            self.audit.credential_event(
                "code_replayed", actor=client.client_id, target=f"code:{short_hash(code_hash)}",
                severity=AuditSeverity.ALERT,
            )
            raise OAuthError(errors.INVALID_GRANT, "Authorization code already used")
        if auth_code.is_expired(self._clock()):
            raise OAuthError(errors.INVALID_GRANT, "Authorization code expired")

        # Burn before any further check: one redemption attempt per code.
        if not await self.store.consume_code(code_hash):
            raise OAuthError(errors.INVALID_GRANT, "Authorization code already used")

        if auth_code.client_id != client.client_id:
            raise OAuthError(errors.INVALID_GRANT, "Client mismatch")
        if auth_code.redirect_uri != redirect_uri:
            raise OAuthError(errors.INVALID_GRANT, "redirect_uri mismatch")
        if auth_code.pkce_challenge:
            if not code_verifier:
                raise OAuthError(errors.INVALID_REQUEST, "code_verifier is required")
            if not verify_pkce(code_verifier, auth_code.pkce_challenge, auth_code.pkce_method or ""):
                raise OAuthError(errors.INVALID_GRANT, "Invalid code_verifier")

        result = await self._issue_tokens(client.client_id, auth_code.user_id, auth_code.scope)
        self.audit.credential_event(
            "token_issued", actor=auth_code.user_id, target=f"client:{client.client_id}",
            scope=auth_code.scope,
        )
        return result

    async def refresh(
        self,
        *,
        refresh_token: str,
        client_id: str = "",
        client_secret: str | None = None,
    ) -> dict:
        """refresh_token grant. Always rotates: the presented pair is revoked."""
        if not refresh_token:
            raise OAuthError(errors.INVALID_REQUEST, "refresh_token is required")

        old = await self.store.get_token_by_refresh_hash(self._hash(refresh_token))
        if old is None:
            raise OAuthError(errors.INVALID_GRANT, "Invalid refresh token")
        if old.revoked:
            self.audit.credential_event(
                "refresh_replayed", actor=old.user_id, target=f"client:{old.client_id}",
                severity=AuditSeverity.ALERT,
            )
            raise OAuthError(errors.INVALID_GRANT, "Invalid refresh token")
        if not old.refresh_valid(self._clock()):
            raise OAuthError(errors.INVALID_GRANT, "Refresh token expired")

        if client_id:
            client = await self.authenticate_client(client_id, client_secret)
            if client.client_id != old.client_id:
                raise OAuthError(errors.INVALID_GRANT, "Client mismatch")
        else:
            client = await self.store.get_client(old.client_id)
            if client is not None and client.confidential:
                raise OAuthError(
                    errors.INVALID_CLIENT, "Client authentication required", status_code=401
                )

        try:
            rotated = await self.store.revoke_token(old.id)
        finally:
            if self.authenticator is not None:
                self.authenticator.invalidate(old.access_token_hash)
        if not rotated:
            # Lost a race with a concurrent refresh of the same token.
            raise OAuthError(errors.INVALID_GRANT, "Invalid refresh token")

        result = await self._issue_tokens(old.client_id, old.user_id, old.scope)
        self.audit.credential_event(
            "token_refreshed", actor=old.user_id, target=f"client:{old.client_id}"
        )
        return result

    async def _issue_tokens(self, client_id: str, user_id: str, scope: str) -> dict:
        now = self._clock()
        access_token = generate_token(32)
        refresh_token = generate_token(32)
        await self.store.create_token(
            OAuthToken(
                id=str(uuid.uuid4()),
                client_id=client_id,
                user_id=user_id,
                access_token_hash=self._hash(access_token),
                refresh_token_hash=self._hash(refresh_token),
                scope=scope,
                access_expires_at=now + self.access_ttl,
                refresh_expires_at=now + self.refresh_ttl,
            )
        )
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": int(self.access_ttl.total_seconds()),
            "refresh_token": refresh_token,
            "scope": scope,
        }

    # ------------------------------------------------------------------
    # Revocation (RFC 7009)
    # ------------------------------------------------------------------

    async def revoke(self, token: str) -> bool:
        """Revoke the pair that *token* (access or refresh) belongs to."""
        token_hash = self._hash(token)
        row = await self.store.get_token_by_access_hash(token_hash)
        if row is None:
            row = await self.store.get_token_by_refresh_hash(token_hash)
        if row is None:
            return False
        try:
            revoked = await self.store.revoke_token(row.id)
        finally:
            if self.authenticator is not None:
                self.authenticator.invalidate(row.access_token_hash)
        if revoked:
            self.audit.credential_event(
                "token_revoked", actor=row.user_id, target=f"client:{row.client_id}"
            )
        return revoked
