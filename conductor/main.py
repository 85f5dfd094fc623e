"""FastAPI application entrypoint.

Startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Build the service container and load persisted cache/ledger/budget state
4. Include routers

Shutdown saves cache and budget state and closes the event bus.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from conductor import __version__
from conductor.api.router import api_v1_router, public_router
from conductor.config import Settings, get_settings
from conductor.container import Container, build_container
from conductor.telemetry.logging import configure_logging

log = structlog.get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    container: Container | None = None,
) -> FastAPI:
    """Application factory.

    Args:
        settings: Defaults to ``get_settings()``
        container: Pre-built container (tests inject one with a fake provider)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_logging(
            json_logs=settings.json_logs,
            log_level="DEBUG" if settings.debug else settings.log_level,
        )
        log.info(
            "app.starting",
            environment=settings.environment,
            state_dir=str(settings.state_dir),
            persist_state=settings.persist_state,
        )
        app.state.container = container or build_container(settings)
        await app.state.container.startup()
        log.info("app.ready", agents=len(app.state.container.registry))
        yield
        await app.state.container.shutdown()
        log.info("app.shutdown")

    app = FastAPI(
        title="Conductor",
        description="Multi-agent orchestration with cost-aware LLM routing.",
        version=__version__,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )

    app.include_router(public_router)
    app.include_router(api_v1_router)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


def run(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Serve the app with uvicorn (used by ``conductor serve``)."""
    import uvicorn

    uvicorn.run("conductor.main:create_app", factory=True, host=host, port=port)
