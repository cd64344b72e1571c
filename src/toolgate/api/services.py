# Component wiring for one toolgate app instance.
# Created: 2026-10-19
#
# build_services() constructs every shared component exactly once and hands
# each its collaborators explicitly. The result is attached to app.state and
# reached from routes through toolgate.api.deps.get_services.

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from toolgate.api.api_keys import APIKeyManager
from toolgate.api.oauth2.server import AuthorizationServer
from toolgate.api.oauth2.storage import (
    CredentialStore,
    FileCredentialStore,
    InMemoryCredentialStore,
)
from toolgate.auth.authenticator import Authenticator
from toolgate.auth.models import Principal
from toolgate.background import BackgroundWriter
from toolgate.cache import ShardedCache
from toolgate.config import Settings
from toolgate.directory import (
    InMemoryTenantDirectory,
    InMemoryUserDirectory,
    TenantDirectory,
    UserDirectory,
    load_directory_file,
)
from toolgate.security.audit import AuditLogger, null_audit_logger
from toolgate.security.rate_limiter import RateLimiter
from toolgate.session.context import ExecutionContext
from toolgate.session.manager import SessionScopeManager

logger = logging.getLogger(__name__)

# (principal, context, payload) -> result dict
ToolDispatcher = Callable[[Principal, ExecutionContext, dict[str, Any]], Awaitable[dict[str, Any]]]


async def echo_dispatcher(
    principal: Principal, context: ExecutionContext, payload: dict[str, Any]
) -> dict[str, Any]:
    """Default dispatcher: reports the scope the call would run under."""
    return {
        "tenant_id": context.require_tenant(),
        "user_id": principal.user_id,
        "auth_mode": principal.auth_mode.value,
        "payload": payload,
    }


@dataclass
class Services:
    settings: Settings
    store: CredentialStore
    users: UserDirectory
    tenants: TenantDirectory
    background: BackgroundWriter
    audit: AuditLogger
    authenticator: Authenticator
    oauth_server: AuthorizationServer
    api_keys: APIKeyManager
    sessions: SessionScopeManager
    login_limiter: RateLimiter
    token_limiter: RateLimiter
    register_limiter: RateLimiter
    dispatcher: ToolDispatcher = echo_dispatcher


def _default_store(settings: Settings) -> CredentialStore:
    if settings.storage_backend == "memory":
        return InMemoryCredentialStore()
    data_dir = settings.data_dir.expanduser()
    data_dir.mkdir(parents=True, exist_ok=True)
    return FileCredentialStore(data_dir / "credentials.json")


def build_services(
    settings: Settings,
    *,
    store: CredentialStore | None = None,
    users: UserDirectory | None = None,
    tenants: TenantDirectory | None = None,
    dispatcher: ToolDispatcher | None = None,
) -> Services:
    store = store if store is not None else _default_store(settings)
    if (users is None or tenants is None) and settings.directory_file is not None:
        seeded_users, seeded_tenants = load_directory_file(settings.directory_file.expanduser())
        users = users if users is not None else seeded_users
        tenants = tenants if tenants is not None else seeded_tenants
        logger.info("Loaded directory seed from %s", settings.directory_file)
    users = users if users is not None else InMemoryUserDirectory()
    tenants = tenants if tenants is not None else InMemoryTenantDirectory()

    if settings.audit_log_enabled and settings.storage_backend == "file":
        audit = AuditLogger(settings.data_dir.expanduser() / "audit.jsonl")
    else:
        audit = null_audit_logger()

    background = BackgroundWriter()
    authenticator = Authenticator(
        store,
        users,
        pepper=settings.secret_pepper,
        cache=ShardedCache(
            shards=settings.cache_shards,
            max_entries=settings.auth_cache_max_entries,
            ttl=settings.auth_cache_ttl_seconds,
        ),
        background=background,
    )
    oauth_server = AuthorizationServer(
        store, users, settings, authenticator=authenticator, audit=audit
    )
    api_keys = APIKeyManager(
        store,
        authenticator,
        valid_scopes=frozenset(settings.scopes_supported),
        audit=audit,
    )
    sessions = SessionScopeManager(
        store,
        tenants,
        contexts=ShardedCache(
            shards=settings.cache_shards, max_entries=settings.session_cache_max_entries
        ),
        selections=ShardedCache(
            shards=settings.cache_shards, max_entries=settings.session_cache_max_entries
        ),
        background=background,
        user_fallback=settings.session_user_fallback,
    )

    def limiter() -> RateLimiter:
        return RateLimiter(settings.login_rate_per_second, settings.login_burst)

    logger.debug("Built services (storage=%s)", type(store).__name__)
    return Services(
        settings=settings,
        store=store,
        users=users,
        tenants=tenants,
        background=background,
        audit=audit,
        authenticator=authenticator,
        oauth_server=oauth_server,
        api_keys=api_keys,
        sessions=sessions,
        login_limiter=limiter(),
        token_limiter=limiter(),
        register_limiter=limiter(),
        dispatcher=dispatcher or echo_dispatcher,
    )
