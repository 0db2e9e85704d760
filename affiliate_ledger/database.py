"""
Async database setup for the commission ledger.

PostgreSQL (psycopg) in production, SQLite (aiosqlite) for local runs.
API requests use get_db; scheduled jobs open their own session with
get_db_session.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from affiliate_ledger.config import settings


logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Route PostgreSQL URLs through the psycopg async driver."""
    for prefix in ("postgresql+asyncpg://", "postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def engine_options(url: str) -> Dict[str, Any]:
    """Engine keyword arguments; SQLite gets no pool sizing."""
    if url.startswith("sqlite"):
        return {"echo": settings.DEBUG, "connect_args": {"check_same_thread": False}}
    return {
        "echo": settings.DEBUG,
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "connect_args": {"connect_timeout": 30},
    }


database_url = normalize_database_url(settings.DATABASE_URL)
engine = create_async_engine(database_url, **engine_options(database_url))

# Status writes are compare-and-set UPDATEs; expire_on_commit=False keeps the
# returned Commission readable after the service commits.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Declarative base for ledger tables."""


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_session():
    """Session for scheduler jobs, which run outside a request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the commission, adjustment, product and marketer tables."""
    from affiliate_ledger import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Ledger schema ready: {', '.join(sorted(Base.metadata.tables))}")
