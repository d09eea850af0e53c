"""
Main API application module for DICOM Fetcher.

This module creates and configures the FastAPI application with all routers
and middleware.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dicom_fetcher.api.exception_handlers import setup_exception_handlers
from dicom_fetcher.api.routers import cache as cache
from dicom_fetcher.api.routers import fetch as fetch
from dicom_fetcher.api.routers import proxy as proxy
from dicom_fetcher.services.fetch import FetchService
from dicom_fetcher.settings import Settings, settings
from dicom_fetcher.utils.logger import logger


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Settings to build the fetch service from (defaults to global settings)

    Returns:
        Configured FastAPI application
    """
    config = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan context manager.

        Builds the process-wide fetch service (cache, deduplication tables and
        upstream client) and schedules cache expiry.
        """
        if not config.has_orthanc_credentials:
            logger.warning("No Orthanc credentials configured (set ORTHANC_TOKEN)")
        else:
            logger.info(f"Orthanc credentials loaded for {config.orthanc_url}")

        service = FetchService.from_settings(config)
        app.state.fetch_service = service
        service.start_expiry(config.cache_cleanup_interval)
        logger.info("Application startup complete")

        try:
            yield
        finally:
            await service.close()
            logger.info("Application shutdown")

    app = FastAPI(
        title="DICOM Fetcher",
        description="Concurrent, cached DICOM preview fetching from an Orthanc PACS",
        version="0.1.0",
        debug=config.debug,
        lifespan=lifespan,
    )

    # The viewer calls the service directly from the browser
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[fetch.CACHE_STATUS_HEADER],
    )

    setup_exception_handlers(app)

    app.include_router(fetch.router, tags=["Fetch"])
    app.include_router(proxy.router, tags=["Proxy"])
    app.include_router(cache.router, tags=["Cache"])

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "healthy"}

    return app


# Create default application instance
app = create_app()
