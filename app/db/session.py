"""
Database Session Management - Async SQLAlchemy session factory.

Provides separate read and write database connections, a FastAPI dependency
for each, and a context manager for offline jobs.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings
from app.observability.logging import get_logger
from app.observability.tracing import instrument_sqlalchemy

logger = get_logger(__name__)

_engines: dict[str, AsyncEngine] = {}
_session_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def _build_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=settings.log_level == "DEBUG",
    )
    instrument_sqlalchemy(engine)
    return engine


def get_engine(role: str = "write") -> AsyncEngine:
    """Get or create the engine for a role ("write" = primary, "read" = replica)."""
    if role not in _engines:
        url = settings.database_url if role == "write" else settings.read_database_url
        _engines[role] = _build_engine(url)
    return _engines[role]


def get_session_factory(role: str = "write") -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory for a role."""
    if role not in _session_factories:
        _session_factories[role] = async_sessionmaker(
            get_engine(role),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factories[role]


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Write session for scripts and background jobs.

    Usage:
        async with session_scope() as session:
            await TokenService(session).cleanup_expired()
    """
    factory = get_session_factory("write")
    async with factory() as session:
        yield session


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for write database session.

    Usage:
        @router.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_write_db)):
            ...
    """
    factory = get_session_factory("write")
    async with factory() as session:
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for read-only queries (replica when configured)."""
    factory = get_session_factory("read")
    async with factory() as session:
        yield session


async def check_database() -> bool:
    """Run a trivial query against the primary; False if unreachable."""
    try:
        async with get_session_factory("write")() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("database_health_check_failed", error=str(e))
        return False


async def close_engines() -> None:
    """Close all database engines (for graceful shutdown)."""
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()
    _session_factories.clear()
