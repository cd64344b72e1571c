# Shared fixtures: settings, in-memory collaborators, app and client.
# Created: 2026-10-19

import base64
import hashlib
import secrets
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from toolgate.api.oauth2.storage import InMemoryCredentialStore
from toolgate.api.serve import create_api_app
from toolgate.api.services import build_services
from toolgate.config import Settings
from toolgate.directory import (
    InMemoryTenantDirectory,
    InMemoryUserDirectory,
    Tenant,
    hash_password,
)

BASE_URL = "https://gate.example.com"
REDIRECT_URI = "https://client.example.com/callback"
PASSWORD = "correct-horse-battery"


def make_pkce_pair():
    """Generate a PKCE code_verifier and code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


def query_of(location: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        base_url=BASE_URL + "/",
        data_dir=tmp_path,
        storage_backend="memory",
        audit_log_enabled=False,
        cleanup_interval_seconds=0,
        login_rate_per_second=100.0,
        login_burst=100,
    )


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(PASSWORD)


@pytest.fixture
def users(password_hash):
    directory = InMemoryUserDirectory()
    for email, name, extra in [
        ("alice@example.com", "Alice", {}),
        ("bob@example.com", "Bob", {}),
        ("carol@example.com", "Carol", {"status": "suspended"}),
        ("root@example.com", "Root", {"role": "admin"}),
    ]:
        directory.add_user(
            email,
            PASSWORD,
            name=name,
            user_id=f"user-{name.lower()}",
            password_hash=password_hash,
            **extra,
        )
    return directory


@pytest.fixture
def tenants():
    return InMemoryTenantDirectory(
        [
            Tenant(id="tenant-acme", name="Acme", slug="acme"),
            Tenant(id="tenant-globex", name="Globex", slug="globex"),
        ]
    )


@pytest.fixture
def services(settings, store, users, tenants):
    return build_services(settings, store=store, users=users, tenants=tenants)


@pytest.fixture
def app(settings, services):
    return create_api_app(settings, services=services)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def drain(client, services):
    """Wait for background writes scheduled on the app's event loop."""

    def _drain():
        client.portal.call(services.background.drain)

    return _drain


@pytest.fixture
def registered_client(client):
    """A confidential client registered through /register."""
    resp = client.post(
        "/register",
        json={"client_name": "Test Client", "redirect_uris": [REDIRECT_URI]},
    )
    assert resp.status_code == 201
    return resp.json()


@pytest.fixture
def authorize(client):
    """Run register-less authorize + login; returns (code, verifier, location)."""

    def _authorize(oauth_client, *, email="alice@example.com", password=PASSWORD, state="xyz"):
        verifier, challenge = make_pkce_pair()
        form = {
            "response_type": "code",
            "client_id": oauth_client["client_id"],
            "redirect_uri": REDIRECT_URI,
            "scope": "mcp:full",
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "email": email,
            "password": password,
        }
        resp = client.post("/authorize", data=form, follow_redirects=False)
        assert resp.status_code == 302, resp.text
        location = resp.headers["location"]
        return query_of(location).get("code"), verifier, location

    return _authorize


@pytest.fixture
def oauth_tokens(client, registered_client, authorize):
    """Complete the code flow; returns the token response for alice."""
    code, verifier, _ = authorize(registered_client)
    resp = client.post(
        "/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT_URI,
            "client_id": registered_client["client_id"],
            "client_secret": registered_client["client_secret"],
            "code_verifier": verifier,
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()
