# Session-Scope Manager: execution contexts per transport session, tenant
# selection, and restoration after restart or cache eviction.
# Created: 2026-10-19
#
# Restoration order for an uncached session id:
#   1. in-process selection cache
#   2. persisted SessionScope row for the session id
#   3. the user's most recent persisted selection (session id changed)
# A restored selection is hydrated directly into the new context; only level 3
# writes anything back (the selection under the new session id).

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from toolgate.api.oauth2.models import SessionScope
from toolgate.api.oauth2.storage import CredentialStore
from toolgate.auth.models import AuthMode, Principal
from toolgate.background import BackgroundWriter
from toolgate.cache import ShardedCache
from toolgate.directory import Tenant, TenantDirectory
from toolgate.session.context import ExecutionContext, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """Outcome of ``SessionScopeManager.select``."""

    tenant: Tenant
    already_scoped: bool = False
    message: str = ""


def new_session_id() -> str:
    return uuid.uuid4().hex


class SessionScopeManager:
    """Owns the context cache and the tenant-selection cache.

    Both caches are injected; ``contexts`` maps session id to
    ``ExecutionContext`` and ``selections`` maps session id to the last
    ``SessionScope`` selected in this process.
    """

    def __init__(
        self,
        store: CredentialStore,
        tenants: TenantDirectory,
        *,
        contexts: ShardedCache[ExecutionContext] | None = None,
        selections: ShardedCache[SessionScope] | None = None,
        background: BackgroundWriter | None = None,
        user_fallback: bool = True,
    ):
        self.store = store
        self.tenants = tenants
        self.contexts: ShardedCache[ExecutionContext] = contexts or ShardedCache()
        self.selections: ShardedCache[SessionScope] = selections or ShardedCache()
        self.background = background or BackgroundWriter()
        self.user_fallback = user_fallback

    async def resolve(
        self,
        session_id: str | None,
        principal: Principal,
        *,
        request_id: str = "",
        user_agent: str = "",
    ) -> ExecutionContext:
        """Return the context for *session_id*, creating or restoring it.

        The returned context's ``session_id`` is the id the caller must echo;
        it differs from the argument when a new id was minted.
        """
        if session_id:
            cached = self.contexts.get(session_id)
            if cached is not None:
                if cached.owned_by(principal):
                    return cached
                logger.warning(
                    "Session %s presented by a different principal; minting a new session",
                    session_id[:8],
                )
                session_id = None

        if not session_id:
            context = ExecutionContext(
                new_session_id(), principal, request_id=request_id, user_agent=user_agent
            )
            self.contexts.put(context.session_id, context)
            logger.debug("New %s session %s", principal.auth_mode.value, context.session_id[:8])
            return context

        context = ExecutionContext(
            session_id, principal, request_id=request_id, user_agent=user_agent
        )
        if principal.auth_mode is AuthMode.OAUTH:
            tenant_id = await self._find_selection(session_id, principal)
            if tenant_id is not None:
                tenant = await self.tenants.get_tenant(tenant_id)
                if tenant is None:
                    logger.warning(
                        "Not restoring session %s: tenant %s no longer exists",
                        session_id[:8], tenant_id,
                    )
                else:
                    context._restore(tenant.id)
                    logger.info("Restored tenant %s for session %s", tenant.id, session_id[:8])
        return self.contexts.put_if_absent(session_id, context)

    async def _find_selection(self, session_id: str, principal: Principal) -> str | None:
        user_id = principal.user_id

        cached = self.selections.get(session_id)
        if cached is not None and cached.user_id == user_id:
            return cached.selected_tenant_id

        row = await self.store.get_session_scope(session_id)
        if row is not None:
            if row.user_id != user_id:
                logger.warning("Ignoring session scope %s owned by another user", session_id[:8])
            elif row.selected_tenant_id:
                self.selections.put(session_id, row)
                return row.selected_tenant_id

        if not self.user_fallback:
            return None
        latest = await self.store.get_latest_session_scope_for_user(user_id)
        if latest is None or not latest.selected_tenant_id:
            return None
        scope = SessionScope(
            session_id=session_id, user_id=user_id, selected_tenant_id=latest.selected_tenant_id
        )
        self.selections.put(session_id, scope)
        self.background.submit(
            self.store.upsert_session_scope(scope),
            description=f"session scope copy for {session_id[:8]}",
        )
        logger.info("Session %s inherits the user's latest selection", session_id[:8])
        return latest.selected_tenant_id

    async def select(
        self, context: ExecutionContext, tenant_id: str = "", *, slug: str = ""
    ) -> Selection:
        """Select a tenant for the session by id, or by slug when no id is given.

        No-op for API-key contexts.
        """
        if context.is_bound:
            tenant = await self.tenants.get_tenant(context.bound_tenant_id or "")
            if tenant is None:
                raise NotFoundError("The API key's tenant no longer exists", field="tenant_id")
            return Selection(
                tenant=tenant,
                already_scoped=True,
                message=f"API key is already scoped to {tenant.name}",
            )

        if tenant_id:
            tenant = await self.tenants.get_tenant(tenant_id)
            if tenant is None:
                raise NotFoundError(f"Tenant {tenant_id} not found", field="tenant_id")
        elif slug:
            tenant = await self.tenants.get_tenant_by_slug(slug)
            if tenant is None:
                raise NotFoundError(f"Tenant with slug {slug} not found", field="slug")
        else:
            raise ValidationError("tenant_id or slug is required", field="tenant_id")

        context._set_selected(tenant.id)
        scope = SessionScope(
            session_id=context.session_id, user_id=context.user_id, selected_tenant_id=tenant.id
        )
        self.selections.put(context.session_id, scope)
        self.background.submit(
            self.store.upsert_session_scope(scope),
            description=f"session scope write for {context.session_id[:8]}",
        )
        return Selection(tenant=tenant, message=f"Selected {tenant.name}")

    def clear(self, session_id: str) -> None:
        """Drop the session's selection in memory and (eventually) in the store."""
        context = self.contexts.get(session_id)
        if context is not None and not context.is_bound:
            context._clear()
        self.selections.invalidate(session_id)
        self.background.submit(
            self.store.delete_session_scope(session_id),
            description=f"session scope delete for {session_id[:8]}",
        )

    def evict(self, session_id: str) -> bool:
        """Forget the cached context only; the next request restores it."""
        return self.contexts.invalidate(session_id)
