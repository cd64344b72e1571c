# Tests for ExecutionContext and SessionScopeManager.
# Created: 2026-10-19

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from toolgate.api.oauth2.models import SessionScope
from toolgate.auth.models import AuthMode, Principal
from toolgate.background import BackgroundWriter
from toolgate.session.context import (
    ExecutionContext,
    NoTenantSelectedError,
    NotFoundError,
    ReadWriteLock,
    ValidationError,
)
from toolgate.session.manager import SessionScopeManager


def oauth_principal(user_id="user-alice"):
    return Principal(
        user_id=user_id,
        email=f"{user_id}@example.com",
        name=user_id,
        role="member",
        auth_mode=AuthMode.OAUTH,
        scopes=("mcp:full",),
    )


def key_principal(user_id="user-alice", tenant_id="tenant-acme"):
    return Principal(
        user_id=user_id,
        email=f"{user_id}@example.com",
        name=user_id,
        role="member",
        auth_mode=AuthMode.API_KEY,
        scopes=("mcp:full",),
        tenant_id=tenant_id,
        credential_id="key-1",
    )


@pytest.fixture
def background():
    return BackgroundWriter()


@pytest.fixture
def manager(store, tenants, background):
    return SessionScopeManager(store, tenants, background=background)


# ===================== ExecutionContext =====================


class TestExecutionContext:
    def test_oauth_context_starts_empty(self):
        ctx = ExecutionContext("s1", oauth_principal())
        assert ctx.tenant_id is None
        assert ctx.has_tenant is False
        with pytest.raises(NoTenantSelectedError) as exc:
            ctx.require_tenant()
        assert exc.value.to_dict()["code"] == "no_tenant_selected"

    def test_api_key_context_is_bound(self):
        ctx = ExecutionContext("s1", key_principal())
        assert ctx.is_bound
        assert ctx.require_tenant() == "tenant-acme"

    def test_owned_by(self):
        ctx = ExecutionContext("s1", oauth_principal())
        assert ctx.owned_by(oauth_principal())
        assert not ctx.owned_by(oauth_principal("user-bob"))
        assert not ctx.owned_by(key_principal())

        bound = ExecutionContext("s2", key_principal())
        assert bound.owned_by(key_principal())
        assert not bound.owned_by(key_principal(tenant_id="tenant-globex"))

    def test_tool_error_dict(self):
        err = ValidationError("bad", field="tenant_id")
        assert err.to_dict() == {"code": "validation", "message": "bad", "field": "tenant_id"}


class TestReadWriteLock:
    def test_concurrent_readers_and_writers(self):
        lock = ReadWriteLock()
        state = {"value": 0}
        torn = []

        def writer(i):
            with lock.write():
                state["value"] = i
                state["copy"] = i

        def reader():
            with lock.read():
                if state.get("copy", state["value"]) != state["value"]:
                    torn.append(True)

        with ThreadPoolExecutor(max_workers=8) as pool:
            for i in range(200):
                pool.submit(writer, i)
                pool.submit(reader)
        assert torn == []

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=2)

        def reader():
            with lock.read():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert not inside.broken


# ===================== SessionScopeManager =====================


class TestResolve:
    @pytest.mark.asyncio
    async def test_mints_session_when_absent(self, manager):
        ctx = await manager.resolve(None, oauth_principal())
        assert len(ctx.session_id) == 32
        assert ctx.tenant_id is None

    @pytest.mark.asyncio
    async def test_cached_context_reused(self, manager):
        first = await manager.resolve(None, oauth_principal())
        again = await manager.resolve(first.session_id, oauth_principal())
        assert again is first

    @pytest.mark.asyncio
    async def test_other_principal_gets_new_session(self, manager):
        first = await manager.resolve(None, oauth_principal())
        hijack = await manager.resolve(first.session_id, oauth_principal("user-bob"))
        assert hijack.session_id != first.session_id
        assert hijack.user_id == "user-bob"

    @pytest.mark.asyncio
    async def test_unknown_session_id_is_kept(self, manager):
        ctx = await manager.resolve("client-chosen", oauth_principal())
        assert ctx.session_id == "client-chosen"


class TestSelect:
    @pytest.mark.asyncio
    async def test_select_sets_tenant(self, manager, store, background):
        ctx = await manager.resolve(None, oauth_principal())
        selection = await manager.select(ctx, "tenant-acme")
        assert selection.tenant.id == "tenant-acme"
        assert selection.already_scoped is False
        assert ctx.require_tenant() == "tenant-acme"

        await background.drain()
        row = await store.get_session_scope(ctx.session_id)
        assert row.selected_tenant_id == "tenant-acme"
        assert row.user_id == "user-alice"

    @pytest.mark.asyncio
    async def test_select_unknown_tenant(self, manager):
        ctx = await manager.resolve(None, oauth_principal())
        with pytest.raises(NotFoundError):
            await manager.select(ctx, "tenant-nope")
        assert ctx.tenant_id is None

    @pytest.mark.asyncio
    async def test_select_empty_id(self, manager):
        ctx = await manager.resolve(None, oauth_principal())
        with pytest.raises(ValidationError):
            await manager.select(ctx, "")

    @pytest.mark.asyncio
    async def test_api_key_select_is_noop(self, manager, store, background):
        ctx = await manager.resolve(None, key_principal())
        selection = await manager.select(ctx, "tenant-globex")
        assert selection.already_scoped is True
        assert selection.tenant.id == "tenant-acme"
        assert "already scoped" in selection.message
        assert ctx.tenant_id == "tenant-acme"
        await background.drain()
        assert await store.get_session_scope(ctx.session_id) is None

    @pytest.mark.asyncio
    async def test_reselect_replaces(self, manager, background):
        ctx = await manager.resolve(None, oauth_principal())
        await manager.select(ctx, "tenant-acme")
        await manager.select(ctx, "tenant-globex")
        assert ctx.tenant_id == "tenant-globex"
        await background.drain()

    @pytest.mark.asyncio
    async def test_select_by_slug(self, manager, store, background):
        ctx = await manager.resolve(None, oauth_principal())
        selection = await manager.select(ctx, slug="globex")
        assert selection.tenant.id == "tenant-globex"
        assert ctx.tenant_id == "tenant-globex"
        await background.drain()
        assert (await store.get_session_scope(ctx.session_id)).selected_tenant_id == "tenant-globex"

    @pytest.mark.asyncio
    async def test_select_unknown_slug(self, manager):
        ctx = await manager.resolve(None, oauth_principal())
        with pytest.raises(NotFoundError) as excinfo:
            await manager.select(ctx, slug="initech")
        assert excinfo.value.field == "slug"
        assert ctx.tenant_id is None

    @pytest.mark.asyncio
    async def test_id_takes_precedence_over_slug(self, manager, background):
        ctx = await manager.resolve(None, oauth_principal())
        selection = await manager.select(ctx, "tenant-acme", slug="globex")
        assert selection.tenant.id == "tenant-acme"
        await background.drain()

    @pytest.mark.asyncio
    async def test_concurrent_selects_agree_with_store(self, store, tenants, background):
        class YieldingTenants:
            async def get_tenant(self, tenant_id):
                await asyncio.sleep(0)
                return await tenants.get_tenant(tenant_id)

        manager = SessionScopeManager(store, YieldingTenants(), background=background)
        ctx = await manager.resolve(None, oauth_principal())
        wanted = ["tenant-acme", "tenant-globex"] * 10
        await asyncio.gather(*(manager.select(ctx, tenant_id) for tenant_id in wanted))
        await background.drain()

        assert ctx.tenant_id in {"tenant-acme", "tenant-globex"}
        row = await store.get_session_scope(ctx.session_id)
        assert row.selected_tenant_id == ctx.tenant_id
        assert manager.selections.get(ctx.session_id).selected_tenant_id == ctx.tenant_id


class TestRestore:
    @pytest.mark.asyncio
    async def test_eviction_restores_from_selection_cache(self, manager, background):
        ctx = await manager.resolve(None, oauth_principal())
        await manager.select(ctx, "tenant-acme")
        assert manager.evict(ctx.session_id) is True

        restored = await manager.resolve(ctx.session_id, oauth_principal())
        assert restored is not ctx
        assert restored.tenant_id == "tenant-acme"
        await background.drain()

    @pytest.mark.asyncio
    async def test_restart_restores_from_store(self, store, tenants, manager, background):
        ctx = await manager.resolve(None, oauth_principal())
        await manager.select(ctx, "tenant-globex")
        await background.drain()

        fresh = SessionScopeManager(store, tenants, background=BackgroundWriter())
        restored = await fresh.resolve(ctx.session_id, oauth_principal())
        assert restored.session_id == ctx.session_id
        assert restored.tenant_id == "tenant-globex"

    @pytest.mark.asyncio
    async def test_new_session_id_falls_back_to_latest(self, store, tenants):
        await store.upsert_session_scope(
            SessionScope(session_id="old", user_id="user-alice", selected_tenant_id="tenant-acme")
        )
        writer = BackgroundWriter()
        manager = SessionScopeManager(store, tenants, background=writer)
        ctx = await manager.resolve("reconnected", oauth_principal())
        assert ctx.tenant_id == "tenant-acme"

        await writer.drain()
        copied = await store.get_session_scope("reconnected")
        assert copied.selected_tenant_id == "tenant-acme"

    @pytest.mark.asyncio
    async def test_fallback_disabled(self, store, tenants):
        await store.upsert_session_scope(
            SessionScope(session_id="old", user_id="user-alice", selected_tenant_id="tenant-acme")
        )
        manager = SessionScopeManager(store, tenants, user_fallback=False)
        ctx = await manager.resolve("reconnected", oauth_principal())
        assert ctx.tenant_id is None

    @pytest.mark.asyncio
    async def test_other_users_row_ignored(self, store, tenants):
        await store.upsert_session_scope(
            SessionScope(session_id="shared", user_id="user-bob", selected_tenant_id="tenant-acme")
        )
        manager = SessionScopeManager(store, tenants, user_fallback=False)
        ctx = await manager.resolve("shared", oauth_principal())
        assert ctx.tenant_id is None

    @pytest.mark.asyncio
    async def test_deleted_tenant_not_restored(self, store, tenants):
        await store.upsert_session_scope(
            SessionScope(session_id="s1", user_id="user-alice", selected_tenant_id="tenant-gone")
        )
        manager = SessionScopeManager(store, tenants)
        ctx = await manager.resolve("s1", oauth_principal())
        assert ctx.tenant_id is None

    @pytest.mark.asyncio
    async def test_api_key_sessions_never_restore(self, store, tenants):
        await store.upsert_session_scope(
            SessionScope(session_id="s1", user_id="user-alice", selected_tenant_id="tenant-globex")
        )
        manager = SessionScopeManager(store, tenants)
        ctx = await manager.resolve("s1", key_principal())
        assert ctx.tenant_id == "tenant-acme"


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_forgets_everywhere(self, manager, store, background):
        ctx = await manager.resolve(None, oauth_principal())
        await manager.select(ctx, "tenant-acme")
        await background.drain()

        manager.clear(ctx.session_id)
        assert ctx.tenant_id is None
        await background.drain()
        assert await store.get_session_scope(ctx.session_id) is None

        manager.evict(ctx.session_id)
        restored = await manager.resolve(ctx.session_id, oauth_principal())
        assert restored.tenant_id is None
