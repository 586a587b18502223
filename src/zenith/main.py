"""FastAPI application factory.

Creates the app with logging middleware, CORS, lifespan wiring for the CRM
layer (storage, connection registry, sync orchestrator, workspace records),
and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.zenith.api.v1.router import router as v1_router
from src.zenith.config import get_settings
from src.zenith.core.logging import LoggingMiddleware, configure_structlog
from src.zenith.core.storage import RedisStorage, create_storage
from src.zenith.crm.orchestrator import SyncOrchestrator
from src.zenith.crm.registry import ConnectionRegistry
from src.zenith.records.service import WorkspaceService
from src.zenith.records.store import RecordStore


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build CRM services on startup, close provider clients on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog(settings)

    storage = create_storage(settings)
    app.state.storage = storage
    registry = ConnectionRegistry(storage, settings=settings)
    await registry.initialize()
    app.state.connection_registry = registry
    app.state.sync_orchestrator = SyncOrchestrator(registry)
    log.info("crm.initialized", connections=len(registry.get_connections()))

    record_store = None
    if settings.has_airtable_bootstrap():
        record_store = RecordStore.from_settings(settings)
        app.state.workspace_service = WorkspaceService(record_store)
        log.info("workspace.initialized", base_id=settings.AIRTABLE_BASE_ID)
    else:
        app.state.workspace_service = None
        log.info("workspace.disabled", reason="Airtable not configured")

    yield

    await registry.aclose()
    if record_store is not None:
        await record_store.aclose()
    if isinstance(storage, RedisStorage):
        await storage.aclose()
    log.info("crm.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Zenith CRM Sync API",
        version="0.1.0",
        description="Connection management and campaign sync for external CRMs",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
