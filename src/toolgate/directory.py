# User and tenant directories, collaborators owned by the primary application.
# Created: 2026-10-19
#
# The auth core only reads from these: the authorization server's login step
# calls verify_credentials() and is_active(); the authenticator resolves the
# principal's profile; the session manager resolves tenants by id or slug. The
# in-memory implementations back development servers and tests.

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError


@dataclass
class User:
    """Account in the primary application."""

    id: str
    email: str
    name: str = ""
    role: str = "member"
    status: str = "active"
    password_hash: str = field(default="", repr=False)


@dataclass(frozen=True)
class Tenant:
    """Organizational scope that tool-level business data is partitioned by."""

    id: str
    name: str
    slug: str = ""


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> User | None: ...

    async def verify_credentials(self, email: str, password: str) -> User | None:
        """Return the user if *password* is correct, None otherwise."""
        ...

    def is_active(self, user: User) -> bool: ...


class TenantDirectory(Protocol):
    async def get_tenant(self, tenant_id: str) -> Tenant | None: ...

    async def get_tenant_by_slug(self, slug: str) -> Tenant | None: ...

    async def list_tenants(self) -> list[Tenant]: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    """Argon2id PHC string for *password*; salt and parameters are embedded."""
    return _hasher.hash(password)


def verify_password(password: str, stored: str) -> bool:
    if not stored:
        return False
    try:
        return _hasher.verify(stored, password)
    except (InvalidHashError, VerificationError):
        return False


class InMemoryUserDirectory:
    def __init__(self) -> None:
        self._users: dict[str, User] = {}

    def add_user(
        self,
        email: str,
        password: str,
        *,
        name: str = "",
        role: str = "member",
        status: str = "active",
        user_id: str | None = None,
        password_hash: str = "",
    ) -> User:
        user = User(
            id=user_id or str(uuid.uuid4()),
            email=email.lower(),
            name=name,
            role=role,
            status=status,
            password_hash=password_hash or hash_password(password),
        )
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def verify_credentials(self, email: str, password: str) -> User | None:
        email = email.strip().lower()
        for user in self._users.values():
            if user.email == email:
                return user if verify_password(password, user.password_hash) else None
        return None

    def is_active(self, user: User) -> bool:
        return user.status == "active"


class InMemoryTenantDirectory:
    def __init__(self, tenants: list[Tenant] | None = None) -> None:
        self._tenants: dict[str, Tenant] = {t.id: t for t in tenants or []}

    def add_tenant(self, name: str, *, slug: str = "", tenant_id: str | None = None) -> Tenant:
        tenant = Tenant(id=tenant_id or str(uuid.uuid4()), name=name, slug=slug)
        self._tenants[tenant.id] = tenant
        return tenant

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        return self._tenants.get(tenant_id)

    async def get_tenant_by_slug(self, slug: str) -> Tenant | None:
        if not slug:
            return None
        return next((t for t in self._tenants.values() if t.slug == slug), None)

    async def list_tenants(self) -> list[Tenant]:
        return sorted(self._tenants.values(), key=lambda t: t.name)


def load_directory_file(path: Path) -> tuple[InMemoryUserDirectory, InMemoryTenantDirectory]:
    """Seed in-memory directories from a JSON file.

    Format::

        {"users": [{"email": ..., "password_hash": ..., "name": ..., "role": ...,
                    "status": ..., "id": ...}],
         "tenants": [{"name": ..., "slug": ..., "id": ...}]}

    ``password_hash`` comes from ``toolgate hash-password``.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    users = InMemoryUserDirectory()
    for entry in data.get("users", []):
        users.add_user(
            entry["email"],
            "",
            name=entry.get("name", ""),
            role=entry.get("role", "member"),
            status=entry.get("status", "active"),
            user_id=entry.get("id"),
            password_hash=entry["password_hash"],
        )
    tenants = InMemoryTenantDirectory()
    for entry in data.get("tenants", []):
        tenants.add_tenant(entry["name"], slug=entry.get("slug", ""), tenant_id=entry.get("id"))
    return users, tenants
