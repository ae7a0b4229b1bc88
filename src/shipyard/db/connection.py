"""Async database connection management.

One engine per process, created lazily from settings. ``get_session`` is the
context-manager entry point for services and background tasks;
``get_session_dependency`` is the FastAPI dependency.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from shipyard.config import settings

log = structlog.get_logger()

_engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def _build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        # In-memory sqlite must share one connection across sessions
        return create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        url,
        pool_size=settings.postgres_pool_size,
        max_overflow=settings.postgres_max_overflow,
        pool_pre_ping=True,
    )


def get_engine() -> AsyncEngine:
    """Return the process engine, creating it on first use."""
    global _engine, async_session_factory
    if _engine is None:
        _engine = _build_engine(settings.postgres_url)
        async_session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert async_session_factory is not None
    return async_session_factory


async def init_db(*, create_tables: bool = False) -> None:
    """Initialize the engine and optionally create tables.

    Production schemas are managed by Alembic; ``create_tables`` is for
    local development and tests.
    """
    engine = get_engine()
    if create_tables:
        # Import registers the table metadata
        from shipyard.db import models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
    log.info("database_initialized", url=engine.url.render_as_string(hide_password=True))


async def close_db() -> None:
    """Dispose of the engine and its pool."""
    global _engine, async_session_factory
    if _engine is not None:
        await _engine.dispose()
        log.info("database_closed")
    _engine = None
    async_session_factory = None


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session, rolling back on error."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_session_dependency() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency wrapper around get_session."""
    async with get_session() as session:
        yield session


async def check_postgres_health() -> dict[str, object]:
    """Run a trivial query and report connectivity."""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        log.warning("database_health_check_failed", error=str(e))
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy"}
