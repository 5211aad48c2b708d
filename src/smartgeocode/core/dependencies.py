"""FastAPI dependency injection for database sessions, auth, and shared services."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartgeocode.core.config import Settings, get_settings
from smartgeocode.core.database import get_session_factory
from smartgeocode.core.security import InvalidCredentialError, subject_from_token
from smartgeocode.lib.geocoder import BaseGeocoder
from smartgeocode.models.account import Account
from smartgeocode.services.worker_pool import GeocodeWorkerPool

# Tokens are issued by the auth collaborator; tokenUrl only documents where
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def get_app_settings(request: Request) -> Settings:
    """Return the settings the application was created with."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


async def get_current_account(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> Account:
    """Resolve the bearer credential to an active account.

    Raises:
        HTTPException: 401 if the token is invalid or expired, or the account
            is unknown or deactivated.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        email = subject_from_token(token, settings.jwt_secret_key, settings.jwt_algorithm)
    except InvalidCredentialError as exc:
        logger.debug(f"Rejected bearer credential: {exc}")
        raise credentials_exception from exc

    result = await session.execute(select(Account).where(Account.email == email))
    account = result.scalar_one_or_none()
    if account is None or not account.is_active:
        raise credentials_exception
    return account


def get_worker_pool(request: Request) -> GeocodeWorkerPool:
    """Return the worker pool started by the application lifespan."""
    pool = getattr(request.app.state, "worker_pool", None)
    if pool is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Batch processing is not available",
        )
    return pool


def get_geocoder(request: Request) -> BaseGeocoder:
    """Return the geocoding provider configured at startup."""
    geocoder = getattr(request.app.state, "geocoder", None)
    if geocoder is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Geocoding is not available",
        )
    return geocoder
