"""
Database Infrastructure
=======================

Process-wide async engine plus scoped sessions.

The engine (asyncpg for PostgreSQL, aiosqlite in tests) is created once,
lazily, and shared. Code never holds a session beyond one unit of work:
``get_session_context()`` opens it, commits on success and rolls back on
error.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from helpdesk.config import settings
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by the triage and workflow tables."""


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """(Re)create the shared engine; called from the app lifespan or lazily."""
    global _engine, _session_maker

    # asyncpg expects ssl= rather than libpq's sslmode=
    url = (database_url or settings.database_url).replace("sslmode=", "ssl=")

    options: dict = {"echo": settings.debug, "pool_pre_ping": True}
    if not make_url(url).get_backend_name().startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)

    _engine = create_async_engine(url, **options)
    _session_maker = async_sessionmaker(bind=_engine, expire_on_commit=False, autoflush=False)

    logger.info("Database engine initialized", extra={"backend": _engine.dialect.name})
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        init_database()
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    if _session_maker is None:
        init_database()
    return _session_maker


async def close_database() -> None:
    """Dispose of pooled connections; the next use re-initializes."""
    global _engine, _session_maker

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_maker = None
    logger.info("Database engine disposed")


@asynccontextmanager
async def get_session_context(
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction: commit on clean exit, rollback (and re-raise) on error.

    Usage:
        async with get_session_context() as session:
            result = await session.execute(select(TicketModel))
    """
    factory = session_maker or get_session_maker()

    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        try:
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create missing tables (development and tests; no migrations)."""
    # Importing the model modules registers their tables on Base.metadata
    import helpdesk.triage.infrastructure.models  # noqa: F401
    import helpdesk.workflow.models  # noqa: F401

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
