"""
refgraph REST API
=================

FastAPI application exposing the reference graph.

Usage:
    uvicorn refgraph.api.main:app --reload --port 8000

Environment Variables:
    REFGRAPH_CONFIG: YAML settings file
    REFGRAPH_DATABASE_PATH: SQLite store path (in-memory store when unset)
    REFGRAPH_LOG_LEVEL: Log level
    REFGRAPH_CORS_ORIGINS: Comma-separated CORS origins
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config.logging import configure_logging
from ..core.errors import RefgraphError
from .dependencies import Container, get_container, set_container
from .routers import register_routers

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:1420",  # Tauri dev server
    "http://127.0.0.1:1420",
    "http://localhost:3000",
    "tauri://localhost",
]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Application Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the container on startup and release it on shutdown."""
    logger.info("refgraph API starting up...")

    container = get_container()
    await container.initialize()
    app.state.container = container

    logger.info("refgraph API ready")

    yield

    logger.info("refgraph API shutting down...")
    await container.close()
    logger.info("refgraph API shutdown complete")


# =============================================================================
# Application Factory
# =============================================================================


def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Application factory for creating the FastAPI instance.

    Args:
        container: Pre-built container (tests); the global one otherwise

    Returns:
        Configured FastAPI application instance
    """
    if container is not None:
        set_container(container)
    container = get_container()

    if container.settings is not None:
        log_settings = container.settings.logging
        configure_logging(
            level=log_settings.level,
            json_format=log_settings.json_format,
            log_file=log_settings.log_file,
        )

    origins = os.environ.get("REFGRAPH_CORS_ORIGINS")
    cors_origins = origins.split(",") if origins else DEFAULT_CORS_ORIGINS

    app = FastAPI(
        title="refgraph API",
        description="Reference graph engine for notes, contacts and topics",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "System", "description": "Health checks"},
            {"name": "Notes", "description": "References, backlinks and suggestions"},
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routers(app)

    @app.exception_handler(RefgraphError)
    async def refgraph_exception_handler(request: Request, exc: RefgraphError):
        """Handle engine errors with their registered status."""
        exc.log()
        return JSONResponse(
            status_code=exc.http_status,
            content={
                "success": False,
                "error": exc.user_message,
                "detail": exc.to_dict(),
                "timestamp": _timestamp(),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with structured response."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.detail,
                "timestamp": _timestamp(),
            },
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions with structured response."""
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "detail": str(exc) if os.environ.get("DEBUG") else None,
                "timestamp": _timestamp(),
            },
        )

    return app


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()
