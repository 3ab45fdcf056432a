"""
Database Session Management - Async SQLAlchemy engine and session factory.

Engines are built once at startup and owned by the AppContext.
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from autonest.config import Settings
from autonest.exceptions import ConfigurationError


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async database engine.

    Raises:
        ConfigurationError: If DATABASE_URL is not set
    """
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL")

    if settings.database_url.startswith("sqlite"):
        return create_async_engine(settings.database_url, echo=settings.log_level == "DEBUG")

    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=settings.log_level == "DEBUG",
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_write_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for a database session.

    Usage:
        @router.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_write_db)):
            ...

    Raises:
        ConfigurationError: If DATABASE_URL is not set
    """
    factory = request.app.state.context.sessions()
    async with factory() as session:
        yield session
