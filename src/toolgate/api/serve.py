"""FastAPI application factory and server entry point for ``toolgate serve``.

Mounts the discovery documents, the OAuth endpoints, the gateway-protected
tenant tools and the API key management routes. The lifespan runs a periodic
cleanup loop and drains pending background writes on shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from toolgate.api.services import Services, ToolDispatcher, build_services
from toolgate.config import Settings, get_settings

logger = logging.getLogger(__name__)


async def _cleanup_loop(services: Services, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            purged = await services.store.purge_expired()
            for limiter in (
                services.login_limiter,
                services.token_limiter,
                services.register_limiter,
            ):
                limiter.cleanup()
            if purged:
                logger.info("Purged %d expired codes/tokens", purged)
        except Exception:
            logger.warning("Credential cleanup failed", exc_info=True)


def create_api_app(
    settings: Settings | None = None,
    *,
    services: Services | None = None,
    dispatcher: ToolDispatcher | None = None,
):
    """Build the FastAPI application. Tests pass prebuilt *services*."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from toolgate import __version__
    from toolgate.api.v1 import mount_v1_routers

    settings = settings or get_settings()
    if services is None:
        services = build_services(settings, dispatcher=dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cleanup = None
        if settings.cleanup_interval_seconds > 0:
            cleanup = asyncio.create_task(
                _cleanup_loop(services, settings.cleanup_interval_seconds)
            )
        try:
            yield
        finally:
            if cleanup is not None:
                cleanup.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleanup
            await services.background.drain()
            logger.info("toolgate stopped")

    app = FastAPI(
        title="toolgate",
        description="OAuth 2.1 authorization server and tenant-scoped tool gateway.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    # --- CORS -----------------------------------------------------------
    # Browser-based MCP clients run discovery, registration and token calls
    # cross-origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allowed_origins),
        allow_credentials="*" not in settings.cors_allowed_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Mcp-Session-Id"],
        expose_headers=["Mcp-Session-Id", "WWW-Authenticate"],
        max_age=86400,
    )

    mount_v1_routers(app)
    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8888,
    dev: bool = False,
) -> None:
    """Start the server."""
    import uvicorn

    settings = get_settings()
    print("\n" + "=" * 50)
    print("TOOLGATE")
    print("=" * 50)
    print(f"\nIssuer:   {settings.base_url}")
    print(f"Resource: {settings.resource_url}")
    print(f"API docs: http://{'localhost' if host in ('127.0.0.1', '0.0.0.0') else host}:{port}/api/v1/docs\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "toolgate.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app(settings)
        uvicorn.run(app, host=host, port=port)
