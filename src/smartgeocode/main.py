"""FastAPI application factory.

Creates the FastAPI app with lifespan management (database engine, geocoding
provider, worker pool), exception handlers, and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from smartgeocode import __version__
from smartgeocode.core.config import Settings, get_settings
from smartgeocode.core.database import dispose_engine, get_session_factory, init_engine
from smartgeocode.core.logging import setup_logging
from smartgeocode.lib.batch_csv import BatchValidationError
from smartgeocode.lib.geocoder import MalformedAddressError, geocoder_from_settings
from smartgeocode.schemas.common import ErrorResponse
from smartgeocode.services.batch_service import BatchAccessDeniedError, BatchNotFoundError, resume_incomplete_jobs
from smartgeocode.services.quota_service import QuotaExceededError
from smartgeocode.services.worker_pool import GeocodeWorkerPool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Start the engine and worker pool on startup; drain them on shutdown."""
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, settings.log_dir)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)

    session_factory = get_session_factory()
    geocoder = geocoder_from_settings(settings)
    pool = GeocodeWorkerPool.from_settings(session_factory, geocoder, settings)
    pool.start()
    app.state.geocoder = geocoder
    app.state.worker_pool = pool

    resumed = await resume_incomplete_jobs(session_factory, pool)
    if resumed:
        logger.info(f"Resumed {resumed} unfinished batch jobs")

    yield

    await pool.stop()
    app.state.worker_pool = None
    await dispose_engine()


def _error(status_code: int, detail: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(detail=detail, code=code).model_dump())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings; loaded from the environment when omitted.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="SmartGeocode API",
        description="Batch and single-address geocoding with monthly usage limits",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.geocoder = None
    app.state.worker_pool = None

    # Register exception handlers
    @app.exception_handler(BatchValidationError)
    async def batch_validation_handler(request: Request, exc: BatchValidationError) -> JSONResponse:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), "validation_error")

    @app.exception_handler(MalformedAddressError)
    async def malformed_address_handler(request: Request, exc: MalformedAddressError) -> JSONResponse:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), "malformed_address")

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
        return _error(status.HTTP_403_FORBIDDEN, str(exc), "quota_exceeded")

    @app.exception_handler(BatchNotFoundError)
    async def not_found_handler(request: Request, exc: BatchNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "Batch not found", "not_found")

    @app.exception_handler(BatchAccessDeniedError)
    async def forbidden_handler(request: Request, exc: BatchAccessDeniedError) -> JSONResponse:
        return _error(status.HTTP_403_FORBIDDEN, "You do not have access to this batch", "forbidden")

    # Register middleware and routers
    from smartgeocode.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
