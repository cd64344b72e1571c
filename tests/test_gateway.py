# Tests for the request gateway and the tenant tool routes behind it.
# Created: 2026-10-19

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI

from toolgate.api import v1
from toolgate.api.gateway import SESSION_HEADER, extract_bearer, www_authenticate
from toolgate.api.oauth2.storage import CredentialStoreError
from toolgate.session.context import ConflictError

CHALLENGE = (
    'Bearer resource_metadata="https://gate.example.com/.well-known/oauth-protected-resource", '
    'scope="mcp:full"'
)


@pytest.fixture
def bearer(oauth_tokens):
    return {"Authorization": f"Bearer {oauth_tokens['access_token']}"}


class TestExtractBearer:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc", "abc"),
            ("bearer abc", "abc"),
            ("BEARER  abc ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            ("Bearer   ", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer(header) == expected

    def test_challenge_format(self, settings):
        assert www_authenticate(settings) == CHALLENGE


class TestUnauthorized:
    def test_missing_header(self, client):
        resp = client.get("/mcp/tenants")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == CHALLENGE
        assert SESSION_HEADER.lower() not in resp.headers

    def test_unknown_token(self, client):
        resp = client.get("/mcp/tenants", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == CHALLENGE

    def test_unknown_api_key(self, client):
        resp = client.post("/mcp", json={}, headers={"Authorization": "Bearer tg_nope"})
        assert resp.status_code == 401

    def test_wrong_scheme(self, client, oauth_tokens):
        resp = client.get(
            "/mcp/tenants", headers={"Authorization": f"Token {oauth_tokens['access_token']}"}
        )
        assert resp.status_code == 401

    def test_store_failure_is_500(self, client, services):
        failing = AsyncMock(side_effect=CredentialStoreError("down"))
        services.store.get_token_by_access_hash = failing
        resp = client.get("/mcp/tenants", headers={"Authorization": "Bearer whatever"})
        assert resp.status_code == 500
        assert resp.json()["detail"]["error"] == "server_error"
        assert "www-authenticate" not in resp.headers


class TestSessionHeader:
    def test_new_session_id_issued(self, client, bearer):
        resp = client.get("/mcp/tenants", headers=bearer)
        assert resp.status_code == 200
        assert len(resp.headers[SESSION_HEADER]) == 32

    def test_session_id_echoed(self, client, bearer):
        sid = client.get("/mcp/tenants", headers=bearer).headers[SESSION_HEADER]
        again = client.get("/mcp/tenants", headers={**bearer, SESSION_HEADER: sid})
        assert again.headers[SESSION_HEADER] == sid

    def test_selection_persists_across_requests(self, client, bearer, drain):
        sid = client.get("/mcp/tenants", headers=bearer).headers[SESSION_HEADER]
        headers = {**bearer, SESSION_HEADER: sid}
        client.post("/mcp/tenants/select", json={"tenant_id": "tenant-globex"}, headers=headers)
        current = client.get("/mcp/tenants/current", headers=headers).json()
        assert current["result"]["tenant"]["id"] == "tenant-globex"
        drain()

    def test_selection_survives_eviction(self, client, services, bearer, drain):
        sid = client.get("/mcp/tenants", headers=bearer).headers[SESSION_HEADER]
        headers = {**bearer, SESSION_HEADER: sid}
        client.post("/mcp/tenants/select", json={"tenant_id": "tenant-acme"}, headers=headers)
        drain()

        services.sessions.evict(sid)
        services.sessions.selections.clear()
        current = client.get("/mcp/tenants/current", headers=headers)
        assert current.headers[SESSION_HEADER] == sid
        assert current.json()["result"]["tenant"]["id"] == "tenant-acme"


class TestTenantTools:
    def _session(self, client, bearer):
        sid = client.get("/mcp/tenants", headers=bearer).headers[SESSION_HEADER]
        return {**bearer, SESSION_HEADER: sid}

    def test_list_tenants(self, client, bearer):
        body = client.get("/mcp/tenants", headers=bearer).json()
        assert body["ok"] is True
        assert [t["id"] for t in body["result"]["tenants"]] == ["tenant-acme", "tenant-globex"]
        assert body["result"]["auth_mode"] == "oauth"
        assert body["result"]["selected_tenant_id"] is None

    def test_dispatch_without_tenant(self, client, bearer):
        resp = client.post("/mcp", json={"tool": "ping"}, headers=bearer)
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "no_tenant_selected"

    def test_dispatch_with_tenant(self, client, bearer, drain):
        headers = self._session(client, bearer)
        selected = client.post(
            "/mcp/tenants/select", json={"tenant_id": "tenant-acme"}, headers=headers
        ).json()
        assert selected["ok"] is True
        assert selected["result"]["tenant"]["name"] == "Acme"

        body = client.post("/mcp", json={"tool": "ping"}, headers=headers).json()
        assert body["ok"] is True
        assert body["result"] == {
            "tenant_id": "tenant-acme",
            "user_id": "user-alice",
            "auth_mode": "oauth",
            "payload": {"tool": "ping"},
        }
        drain()

    def test_select_unknown_tenant(self, client, bearer):
        body = client.post(
            "/mcp/tenants/select", json={"tenant_id": "tenant-nope"}, headers=bearer
        ).json()
        assert body["ok"] is False
        assert body["error"] == {
            "code": "not_found",
            "message": "Tenant tenant-nope not found",
            "field": "tenant_id",
        }

    def test_select_by_slug(self, client, bearer, drain):
        headers = self._session(client, bearer)
        body = client.post(
            "/mcp/tenants/select", json={"slug": "globex"}, headers=headers
        ).json()
        assert body["ok"] is True
        assert body["result"]["tenant"]["id"] == "tenant-globex"
        current = client.get("/mcp/tenants/current", headers=headers).json()
        assert current["result"]["tenant"]["slug"] == "globex"
        drain()

    def test_select_without_id_or_slug(self, client, bearer):
        body = client.post("/mcp/tenants/select", json={}, headers=bearer).json()
        assert body["ok"] is False
        assert body["error"]["code"] == "validation"

    def test_clear_selection(self, client, bearer, drain):
        headers = self._session(client, bearer)
        client.post("/mcp/tenants/select", json={"tenant_id": "tenant-acme"}, headers=headers)
        cleared = client.delete("/mcp/tenants/selection", headers=headers).json()
        assert cleared["result"]["cleared"] is True
        current = client.get("/mcp/tenants/current", headers=headers).json()
        assert current["error"]["code"] == "no_tenant_selected"
        drain()

    def test_dispatcher_errors_become_results(self, client, services, bearer):
        async def failing(principal, context, payload):
            raise ConflictError("already exists", field="name")

        services.dispatcher = failing
        body = client.post("/mcp", json={}, headers=bearer).json()
        assert body["ok"] is False
        assert body["error"]["code"] == "conflict"


class TestRouterMounting:
    def test_all_routers_mounted(self):
        app = FastAPI()
        v1.mount_v1_routers(app)
        paths = {route.path for route in app.routes}
        assert {"/token", "/mcp/tenants/select", "/api/v1/auth/api-keys"} <= paths

    def test_broken_router_fails_startup(self, monkeypatch):
        monkeypatch.setattr(
            v1, "_V1_ROUTERS", [*v1._V1_ROUTERS, ("toolgate.api.v1.missing", "router", "")]
        )
        with pytest.raises(ModuleNotFoundError):
            v1.mount_v1_routers(FastAPI())
