"""Engine and AsyncSession factory shared by the API and the dispatch loops."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from outreach_agent.config import get_settings
from outreach_agent.db.base import Base


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pooling suited to the backend.

    SQLite gets a busy timeout so concurrent claimers wait for the write
    lock instead of failing; PostgreSQL gets production pooling.
    """
    if "sqlite" in url:
        if "///" in url:
            db_path = url.split("///", 1)[1]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return create_async_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``.

    Objects stay readable after commit so loops can hand loaded rows to
    the dispatch step after the read session has closed.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        database = get_settings().database
        _engine = create_engine_for_url(database.url, database.echo)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commits when the route returns, rolls back if it raises."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_all(engine: AsyncEngine) -> None:
    """Create every table registered on Base.metadata."""
    import outreach_agent.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Initialize database and create all tables. Safe to call repeatedly."""
    await create_all(get_engine())


async def close_db() -> None:
    """Dispose of the engine during application shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
