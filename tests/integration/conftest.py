"""Fixtures wiring the full application to a test database, a stub provider and a live worker pool."""

from collections.abc import AsyncGenerator, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from smartgeocode.core.config import Settings
from smartgeocode.main import create_app
from smartgeocode.models.account import Account
from smartgeocode.services.worker_pool import GeocodeWorkerPool


@pytest.fixture
async def worker_pool(
    session_factory: async_sessionmaker[AsyncSession],
    stub_geocoder,  # noqa: ANN001
) -> AsyncGenerator[GeocodeWorkerPool]:
    pool = GeocodeWorkerPool(session_factory, stub_geocoder, worker_count=2, per_job_concurrency=2, retry_base_delay=0)
    pool.start()
    yield pool
    await pool.stop()


@pytest.fixture
def app(
    settings: Settings,
    async_engine: AsyncEngine,
    worker_pool: GeocodeWorkerPool,
    stub_geocoder,  # noqa: ANN001
) -> FastAPI:
    """Application with the state its lifespan would have set up."""
    app = create_app(settings)
    app.state.geocoder = stub_geocoder
    app.state.worker_pool = worker_pool
    return app


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers(account: Account, token_for: Callable[[Account], str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(account)}"}
