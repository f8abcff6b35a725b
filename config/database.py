"""
config/database.py
Async SQLAlchemy engine, session factory, and base model.
Uses the asyncpg driver for PostgreSQL in production.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from tenacity import before_sleep_log, retry, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)


def _engine_options() -> dict:
    options = {
        "pool_pre_ping": True,       # Detect stale connections
        "echo": settings.DEBUG,      # Log SQL in debug mode
    }
    if not settings.uses_sqlite:
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            pool_recycle=3600,       # Recycle connections every hour
        )
    return options


# ── Engine ────────────────────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **_engine_options())

# ── Session Factory ───────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,      # Don't expire after commit (async-safe)
    autocommit=False,
    autoflush=False,
)


# ── Base Model ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """All ORM models inherit from this."""
    pass


# ── Dependency ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: yields an async database session.
    Auto-commits on success, rolls back on error.

    Usage:
        @router.get("/bookings")
        async def list_bookings(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@retry(
    stop=stop_after_attempt(settings.DATABASE_CONNECT_ATTEMPTS),
    wait=wait_exponential(multiplier=1, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def init_db() -> None:
    """Create all tables. Run during app startup; retried while the database boots."""
    # Import models so they register on Base.metadata
    import shared.models.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose engine. Run during app shutdown."""
    await engine.dispose()
