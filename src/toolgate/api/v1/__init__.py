# API v1 router aggregation.
# Created: 2026-10-19
#
# mount_v1_routers(app) registers the routers. The OAuth endpoints and
# discovery documents live at the root (clients derive their URLs from the
# issuer), the tenant tools under /mcp, management endpoints under /api/v1.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Domain routers, imported lazily inside mount_v1_routers() to avoid circular imports.
_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, prefix)
    ("toolgate.api.v1.wellknown", "router", ""),
    ("toolgate.api.v1.oauth2", "router", ""),
    ("toolgate.api.v1.tenants", "router", ""),
    ("toolgate.api.v1.api_keys", "router", "/api/v1"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 routers on *app*."""
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, prefix in _V1_ROUTERS:
        try:
            mod = importlib.import_module(module_path)
            router: APIRouter = getattr(mod, attr_name)
        except (ImportError, AttributeError):
            # Every router here is core; the app must not start without one.
            logger.exception("Failed to mount v1 router %s", module_path)
            raise
        app.include_router(router, prefix=prefix)
        logger.debug("Mounted v1 router: %s at %r", module_path, prefix or "/")
