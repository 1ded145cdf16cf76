"""
Database connection management (SQLAlchemy async engine and sessions).
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tcgmarket.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def _engine_kwargs() -> Dict[str, Any]:
    """Pool settings; SQLite's pools reject the QueuePool sizing arguments."""
    kwargs: Dict[str, Any] = {"echo": settings.DEBUG}
    if not settings.is_sqlite:
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return kwargs


engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs())

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a request-scoped async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session as context manager (health checks, scripts)."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    All-or-nothing block on an existing session.

    Everything written inside the block (a status flip, its audit event, an
    inventory decrement) is committed together when the block exits cleanly
    and rolled back together when it raises. Works whether or not the
    session already autobegan a transaction for earlier reads.

    Usage:
        async with unit_of_work(session):
            await apply_transition(session, ...)
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


async def create_schema(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables and indexes that do not exist yet."""
    from tcgmarket.models import inventory, marketplace, trade, trust  # noqa: F401
    from tcgmarket.models.base import Base

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


async def close_engine() -> None:
    """Dispose the connection pool."""
    await engine.dispose()
    logger.info("Database engine disposed")


def dialect_insert(session: AsyncSession):
    """``insert`` construct of the bound dialect, for ON CONFLICT upserts."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Unsupported dialect for upserts: {dialect}")


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when the IntegrityError comes from a UNIQUE constraint or index."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code is not None:
        return code == "23505"
    message = str(orig or exc).lower()
    return "unique constraint" in message or "duplicate key" in message
