"""
FastAPI application factory for the Match Sync API service.

Creates the app with:
- REST routes (leagues, picks, head-to-head)
- Middleware stack
- Health and refresh-state endpoints
- Lifespan management: provider clients, the auto-refresh scheduler and
  periodic cache eviction start with the app and stop with it
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import get_service, init_dependencies
from api.middleware import setup_middleware
from api.routes.head_to_head import router as head_to_head_router
from api.routes.leagues import router as leagues_router
from api.routes.picks import router as picks_router
from api.service import SportsDataService
from ingest.providers.registry import ProviderRegistry

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without upstream providers."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Starts provider clients and background refresh on startup, and shuts
    them down gracefully.
    """
    settings = get_settings()
    setup_logging("api")
    if settings.metrics_enabled:
        start_metrics_server(settings.metrics_port)

    service = SportsDataService(ProviderRegistry.from_settings(settings), settings)
    await service.start()
    init_dependencies(service)

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        provider=settings.default_provider,
    )

    yield

    await service.stop()
    init_dependencies(None)
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing."""
    app = FastAPI(
        title="Match Sync API",
        description="Cached sports data with derived standings, head-to-head and picks",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(leagues_router)
    app.include_router(picks_router)
    app.include_router(head_to_head_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/v1/refresh-state", tags=["system"])
    async def refresh_state(service: SportsDataService = Depends(get_service)) -> list[dict[str, Any]]:
        """When each data domain last refreshed and whether a fetch is in flight."""
        return [state.model_dump(mode="json") for state in service.refresh_states()]

    return app


app = create_app()
