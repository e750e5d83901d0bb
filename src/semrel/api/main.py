"""
FastAPI application for semantic relatedness queries.

Serves the metrics of an SRRegistry over HTTP:
- msgspec JSON rendering for score lists and matrices
- Consistent error envelope for core errors
- Status and health endpoints

Run with:
    uvicorn semrel.api.main:create_app --factory
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import msgspec
from fastapi import FastAPI, Request, Response
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from ..core.config import Settings, get_settings
from ..core.errors import SRError
from ..registry import SRRegistry, load_registry
from .dependencies import RegistryDependency
from .errors import sr_error_handler
from .routers import similarity

logger = logging.getLogger(__name__)


class MSGSpecResponse(Response):
    """Response class using msgspec for JSON serialization."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        if content is None:
            return b""
        return msgspec.json.encode(content)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log what is being served on startup and shutdown."""
    registry: SRRegistry = app.state.registry
    for row in registry.status():
        logger.info(
            "Serving %s/%s (%s): %s",
            row["metric"],
            row["language"],
            row["kind"],
            f"version {row['version']}" if row["version"] else ("built" if row["built"] else "not built"),
        )
    yield
    logger.info("Shutting down semrel API...")


def create_app(registry: SRRegistry | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        registry: Registry to serve (loaded from settings and the store if omitted)
        settings: Settings (process settings if omitted)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()
    registry = registry or load_registry(settings)

    app = FastAPI(
        title="semrel",
        description="Semantic relatedness between concepts and phrases",
        version="0.3.0",
        default_response_class=MSGSpecResponse,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.settings = settings

    # GZip compression middleware - cosimilarity matrices compress well
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        response.headers["X-Process-Time"] = f"{process_time:.2f}ms"
        return response

    app.add_exception_handler(SRError, sr_error_handler)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions with consistent format."""
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An internal error occurred",
                }
            },
        )

    @app.get("/health", tags=["health"])
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(tz=timezone.utc).isoformat()}

    @app.get("/api/v1/sr/status", tags=["status"])
    def sr_status(registry: RegistryDependency):
        """Build status of every served metric."""
        return {"metrics": registry.status()}

    app.include_router(
        similarity.router,
        prefix="/api/v1/sr/{language}/{metric}",
        tags=["similarity"],
    )

    return app
