"""
Database Configuration
Async SQLAlchemy engine and session factory for the trade ledger
"""

import logging
import os
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by every ledger table"""
    pass


def async_database_url(url: str) -> str:
    """postgresql:// and postgres:// URLs are served through asyncpg"""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def build_engine(url: str) -> AsyncEngine:
    url = async_database_url(url)
    if make_url(url).get_backend_name() == "sqlite":
        # SQLite has no server-side pool to size
        return create_async_engine(url, echo=settings.DEBUG)
    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
        pool_pre_ping=True,
    )


# Alembic drives its own sync engine; skip the async one there
ALEMBIC_MODE = os.getenv("ALEMBIC_MODE") == "1"

engine: Optional[AsyncEngine] = None if ALEMBIC_MODE else build_engine(settings.DATABASE_URL)
async_session_factory = (
    async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if engine is not None
    else None
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session: committed when the route returns,
    rolled back when it raises
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    if not settings.AUTO_CREATE_TABLES:
        logger.info("Schema managed by Alembic (AUTO_CREATE_TABLES disabled)")
        return

    from app.infrastructure.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created ledger tables on %s", engine.url.get_backend_name())


async def close_db():
    await engine.dispose()
