"""
FastAPI application factory for campusdb.

This module creates the FastAPI app with:
- CORS configuration for the frontend
- Store and service lifecycle management
- Mapping from campusdb errors to HTTP statuses
- Versioned API routes and a health endpoint

Invariants:
    - Every CampusDbError becomes a JSON body from CampusDbError.to_dict()
    - A partial synchronization failure is a server error (500), because
      some writes persisted and the caller cannot fix it by changing input

How to change safely:
    - Keep ERROR_STATUS in sync when adding error types
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import ServerConfig
from ..errors import (
    CampusDbError,
    ConflictError,
    DuplicateIdError,
    HasDependentsError,
    NotFoundError,
    PartialSynchronizationError,
)
from ..services import CampusServices
from ..store import StoreError, create_document_store
from .routes import router
from .settings import Settings

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[CampusDbError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    HasDependentsError: 400,
    DuplicateIdError: 400,
    PartialSynchronizationError: 500,
}


def status_for(error: CampusDbError) -> int:
    """HTTP status for an error; unlisted CampusDbErrors are client errors."""
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


async def handle_campusdb_error(request: Request, exc: CampusDbError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error_code": exc.code, "details": exc.details},
        )
    return JSONResponse(status_code=status, content=exc.to_dict())


async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(f"Store error: {exc}", exc_info=True, extra={"path": request.url.path})
    return JSONResponse(
        status_code=503,
        content={"error": str(exc), "error_code": "STORE_UNAVAILABLE", "details": {}},
    )


def create_app(
    services: CampusServices | None = None,
    settings: Settings | None = None,
    config: ServerConfig | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Ready services to serve; when omitted, a store is built
            from config (or the environment) on startup and closed on shutdown
        settings: API settings
        config: Server configuration used when services is omitted
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if services is not None:
            app.state.services = services
            yield
            return

        server_config = config or ServerConfig.from_env()
        store = create_document_store(server_config.storage)
        await store.connect()
        owned = CampusServices.create(store, server_config.consistency)
        await owned.ensure_indexes()
        if server_config.http.seed_on_start:
            from ..seed import seed_database

            await seed_database(owned)
        app.state.services = owned

        yield

        await store.close()

    app = FastAPI(
        title=settings.title,
        description=(
            "Students, instructors, departments, courses and enrollments "
            "on a document store with hand-maintained consistency."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CampusDbError, handle_campusdb_error)
    app.add_exception_handler(StoreError, handle_store_error)

    # API routes
    app.include_router(router, prefix="/api/v1")

    # Health endpoint at root
    @app.get("/health")
    async def health(request: Request):
        current = getattr(request.app.state, "services", None)
        connected = current is not None and current.store.is_connected
        return {
            "status": "healthy" if connected else "starting",
            "service": "campusdb",
            "store_connected": connected,
        }

    return app
