"""Shared test fixtures for the database, accounts, auth tokens, and a stub geocoder."""

import asyncio
import uuid
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from smartgeocode.core.config import Settings
from smartgeocode.core.database import dispose_engine, get_session_factory, init_engine
from smartgeocode.core.security import create_access_token
from smartgeocode.lib.geocoder import AddressFields, BaseGeocoder, GeocodingResult
from smartgeocode.models.account import Account
from smartgeocode.models.base import Base

TEST_SECRET = "test-secret-key-not-for-production-use"


class StubGeocoder(BaseGeocoder):
    """In-memory provider: answers by address, records every call.

    ``answers`` maps an address to a GeocodingResult, None (no match), an
    exception instance, or a list of those consumed one per call.
    Unlisted addresses resolve to a fixed point.
    """

    def __init__(self, answers: dict[str, object] | None = None, delay: float = 0.0) -> None:
        self.answers = dict(answers or {})
        self.delay = delay
        self.calls: list[AddressFields] = []

    @property
    def provider_name(self) -> str:
        return "stub"

    async def geocode(self, fields: AddressFields) -> GeocodingResult | None:
        self.calls.append(fields)
        if self.delay:
            await asyncio.sleep(self.delay)
        answer = self.answers.get(fields.address, GeocodingResult(latitude=40.0, longitude=-74.0))
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def calls_for(self, address: str) -> int:
        return sum(1 for f in self.calls if f.address == address)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test application settings backed by a temp-file SQLite database."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret_key=TEST_SECRET,
        jwt_algorithm="HS256",
        geocoder_provider="nominatim",
        geocoder_max_retries=3,
        geocoder_retry_base_delay=0.0,
        worker_count=4,
        per_job_concurrency=2,
        plan_limits={"free": 500, "premium": 10_000},
        rate_limit_per_minute=1000,
    )


@pytest.fixture
async def async_engine(settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Initialize the process-wide engine on a fresh database with all tables."""
    engine = init_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await dispose_engine()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_account(session_factory: async_sessionmaker[AsyncSession]) -> Callable:
    """Factory creating committed accounts."""

    async def _make(email: str | None = None, plan: str = "free", *, is_active: bool = True) -> Account:
        async with session_factory() as session:
            account = Account(
                id=uuid.uuid4(),
                email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
                plan=plan,
                is_active=is_active,
            )
            session.add(account)
            await session.commit()
            return account

    return _make


@pytest.fixture
async def account(make_account: Callable) -> Account:
    """A free-plan account."""
    return await make_account("owner@example.com")


@pytest.fixture
def token_for(settings: Settings) -> Callable[[Account], str]:
    def _token(acct: Account, expires_minutes: int = 30) -> str:
        return create_access_token(acct.email, settings.jwt_secret_key, settings.jwt_algorithm, expires_minutes)

    return _token


@pytest.fixture
def stub_geocoder() -> StubGeocoder:
    return StubGeocoder()


@pytest.fixture
def make_geocoder() -> Callable[..., StubGeocoder]:
    """Factory for stub providers with scripted answers."""
    return StubGeocoder
