# Per-session execution context and tool-level error results.
# Created: 2026-10-19
#
# One ExecutionContext per transport session. Everything except the selected
# tenant is fixed at construction; the selected tenant sits behind a
# read-write lock. API-key contexts are bound to the key's tenant for life.

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any

from toolgate.auth.models import AuthMode, Principal


class ReadWriteLock:
    """Many readers or one writer. Writers wait for in-flight readers to drain."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


# ---------------------------------------------------------------------------
# Tool errors
# ---------------------------------------------------------------------------


class ToolError(Exception):
    """Domain failure returned to the caller as a structured result."""

    code = "error"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field:
            data["field"] = self.field
        return data


class ValidationError(ToolError):
    code = "validation"


class NotFoundError(ToolError):
    code = "not_found"


class ConflictError(ToolError):
    code = "conflict"


class NoTenantSelectedError(ToolError):
    code = "no_tenant_selected"

    def __init__(self, message: str = "No tenant selected. Select a tenant first."):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------


class ExecutionContext:
    """Runtime scope for one session.

    Only ``SessionScopeManager`` changes the selection; tool code reads it
    through ``tenant_id`` or ``require_tenant()``.
    """

    def __init__(
        self,
        session_id: str,
        principal: Principal,
        *,
        request_id: str = "",
        user_agent: str = "",
    ):
        self.session_id = session_id
        self.principal = principal
        self.auth_mode = principal.auth_mode
        self.request_id = request_id
        self.user_agent = user_agent
        self.bound_tenant_id = (
            principal.tenant_id if principal.auth_mode is AuthMode.API_KEY else None
        )
        self._selected_tenant_id: str | None = None
        self._lock = ReadWriteLock()

    @property
    def user_id(self) -> str:
        return self.principal.user_id

    @property
    def is_bound(self) -> bool:
        return self.auth_mode is AuthMode.API_KEY

    @property
    def tenant_id(self) -> str | None:
        if self.is_bound:
            return self.bound_tenant_id
        with self._lock.read():
            return self._selected_tenant_id

    @property
    def has_tenant(self) -> bool:
        return self.tenant_id is not None

    def require_tenant(self) -> str:
        """Tenant id for a tenant-scoped operation, or ``NoTenantSelectedError``."""
        tenant_id = self.tenant_id
        if not tenant_id:
            raise NoTenantSelectedError()
        return tenant_id

    def owned_by(self, principal: Principal) -> bool:
        """Whether *principal* may reuse this context."""
        return (
            self.principal.user_id == principal.user_id
            and self.auth_mode is principal.auth_mode
            and (not self.is_bound or self.bound_tenant_id == principal.tenant_id)
        )

    def _set_selected(self, tenant_id: str | None) -> None:
        with self._lock.write():
            self._selected_tenant_id = tenant_id

    # Hydration from an already-durable selection.
    _restore = _set_selected

    def _clear(self) -> None:
        self._set_selected(None)

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(session_id={self.session_id!r}, user_id={self.user_id!r}, "
            f"auth_mode={self.auth_mode.value}, tenant_id={self.tenant_id!r})"
        )
