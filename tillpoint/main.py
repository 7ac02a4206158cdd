"""
Main FastAPI application for Tillpoint.
"""
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from tillpoint import __version__
from tillpoint.api.v1.api import api_router
from tillpoint.core.config import Settings, get_settings
from tillpoint.core.database import Database
from tillpoint.core.exceptions import TillpointError
from tillpoint.core.logging import configure_logging
from tillpoint.core.redis_client import CacheManager
from tillpoint.services.container import build_services

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    cache: Optional[CacheManager] = None,
) -> FastAPI:
    """Build the application around one database and cache."""
    settings = settings or get_settings()
    configure_logging(settings)

    database = database or Database.from_settings(settings)
    cache = cache or CacheManager.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting Tillpoint application...")

        try:
            database.create_all()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

        if not database.check_connection():
            logger.error("Database connection check failed")
            raise RuntimeError("Database connection failed")

        if not cache.check_connection():
            logger.warning("Redis unavailable; continuing without cache")

        logger.info("Tillpoint application started successfully")

        yield

        logger.info("Shutting down Tillpoint application...")
        database.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Point-of-sale checkout, stock ledger and barcode pool",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.services = build_services(settings, database, cache)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.include_router(api_router, prefix=settings.api_v1_str)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Welcome to Tillpoint",
            "version": __version__,
            "status": "running",
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        health_status = {
            "status": "healthy",
            "database": "connected" if database.check_connection() else "disconnected",
            "redis": "connected" if cache.check_connection() else "disconnected",
        }

        if health_status["database"] == "disconnected":
            health_status["status"] = "unhealthy"
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    @app.exception_handler(TillpointError)
    async def tillpoint_error_handler(request: Request, exc: TillpointError):
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tillpoint.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
