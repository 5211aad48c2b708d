"""Root API router with /api/v1 prefix and middleware registration."""

from fastapi import APIRouter, FastAPI

from smartgeocode.api.middleware import RateLimitMiddleware, SecurityHeadersMiddleware, setup_cors
from smartgeocode.core.config import Settings


def create_router(settings: Settings) -> APIRouter:
    """Create the root API router with all sub-routers included.

    Args:
        settings: Application settings.

    Returns:
        Configured API router.
    """
    from smartgeocode.api.v1.batches import batches_router
    from smartgeocode.api.v1.geocoding import geocoding_router
    from smartgeocode.api.v1.health import health_router
    from smartgeocode.api.v1.usage import usage_router

    root_router = APIRouter(prefix=settings.api_v1_prefix)
    root_router.include_router(health_router)
    root_router.include_router(batches_router)
    root_router.include_router(geocoding_router)
    root_router.include_router(usage_router)

    return root_router


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware on the FastAPI app.

    Args:
        app: The FastAPI application.
        settings: Application settings.
    """
    setup_cors(app, settings)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
        trusted_proxy_headers=settings.trusted_proxy_header_list,
        exempt_paths=(f"{settings.api_v1_prefix}/health",),
    )
