"""Async database engine and session management.

Holds the process-wide engine and session factory. The API lifespan, the
worker pool, and the CLI all open sessions from the same factory.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

# Seconds a SQLite connection waits on a locked database before failing
_SQLITE_BUSY_TIMEOUT = 30


def get_engine() -> AsyncEngine:
    """Return the current async engine.

    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _engine is None:
        msg = "Database engine not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the current session factory.

    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _session_factory is None:
        msg = "Session factory not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _session_factory


def build_engine(database_url: str, *, schema: str | None = None, **kwargs: object) -> AsyncEngine:
    """Create an async engine with backend-appropriate connection options.

    PostgreSQL engines get a pooled configuration and an optional
    ``search_path``; SQLite engines get a busy timeout so concurrent
    workers wait for the write lock instead of failing.

    Args:
        database_url: Async SQLAlchemy connection string.
        schema: Optional PostgreSQL schema for isolated environments.
        **kwargs: Additional arguments passed to create_async_engine.

    Returns:
        The created async engine.
    """
    connect_args = kwargs.pop("connect_args", {})
    if not isinstance(connect_args, dict):
        msg = "connect_args must be a dict"
        raise TypeError(msg)

    if database_url.startswith("sqlite"):
        connect_args.setdefault("timeout", _SQLITE_BUSY_TIMEOUT)
    else:
        if schema is not None:
            connect_args["server_settings"] = {"search_path": f"{schema},public"}
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 5)

    return create_async_engine(database_url, connect_args=connect_args, **kwargs)


def init_engine(database_url: str, *, schema: str | None = None, **kwargs: object) -> AsyncEngine:
    """Create and store the async engine and session factory.

    Args:
        database_url: Async SQLAlchemy connection string.
        schema: Optional PostgreSQL schema for isolated environments.
        **kwargs: Additional arguments passed to create_async_engine.

    Returns:
        The created async engine.
    """
    global _engine, _session_factory  # noqa: PLW0603
    _engine = build_engine(database_url, schema=schema, **kwargs)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose of the async engine and release connections."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
