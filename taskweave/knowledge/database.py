"""
Async engine and session handling for the task store.

One engine is shared per process. SQLite files get WAL journaling and a
busy timeout so that the parallel saves of a wave do not trip over the
database lock; PostgreSQL gets a sized connection pool.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from loguru import logger
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taskweave.core.config import get_settings

SQLITE_BUSY_TIMEOUT_MS = 5000

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _apply_sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def _build_engine(url: str, echo: bool) -> AsyncEngine:
    if not url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        url,
        echo=echo,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_MS / 1000},
    )
    event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)
    return engine


def get_engine() -> AsyncEngine:
    """Get the shared engine, creating it from the current settings."""
    global _engine

    if _engine is None:
        settings = get_settings()
        _engine = _build_engine(settings.database_url_async, settings.taskweave_debug)
        logger.info(f"Task database engine created ({_engine.url.get_backend_name()})")

    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker

    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)

    return _session_maker


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session that commits on success and rolls back on error.

    Example:
        >>> async with get_db_session() as session:
        ...     record = await session.get(TaskRecord, "fetch")
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the task and memory tables when missing."""
    from taskweave.knowledge.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.debug("Task database schema ready")


async def drop_db() -> None:
    """Drop the task and memory tables, deleting every stored record."""
    from taskweave.knowledge.models import Base

    logger.warning("Dropping task database tables")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def close_db() -> None:
    """Dispose the shared engine so the next use rebuilds it from settings."""
    global _engine, _session_maker

    if _engine is None:
        return

    await _engine.dispose()
    _engine = None
    _session_maker = None
    logger.debug("Task database engine disposed")


async def health_check() -> bool:
    """Return whether the task database answers a trivial query."""
    try:
        async with get_db_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Task database health check failed: {e}")
        return False
    return True
