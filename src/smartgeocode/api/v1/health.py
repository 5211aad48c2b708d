"""Liveness endpoint."""

from fastapi import APIRouter

from smartgeocode import __version__
from smartgeocode.schemas.common import HealthResponse

health_router = APIRouter(tags=["health"])


@health_router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)
