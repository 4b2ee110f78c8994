import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from akira_render.config import get_settings
from akira_render.models.base import Base

logger = logging.getLogger(__name__)

_SYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql+psycopg2://",
    "sqlite+aiosqlite://": "sqlite://",
}


def to_sync_url(database_url: str) -> str:
    """Convert an async driver URL to its sync counterpart for the worker."""
    for async_prefix, sync_prefix in _SYNC_DRIVERS.items():
        if database_url.startswith(async_prefix):
            return sync_prefix + database_url[len(async_prefix):]
    return database_url


def _pool_options(database_url: str, pool_size: int, pool_recycle: int) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": 0,  # Queue instead of exceeding the connection limit
        "pool_pre_ping": True,
        "pool_recycle": pool_recycle,
    }


@lru_cache
def get_engine() -> AsyncEngine:
    """Async engine for FastAPI."""
    settings = get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        **_pool_options(settings.database_url, pool_size=5, pool_recycle=300),
    )


@lru_cache
def get_async_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


@lru_cache
def get_sync_engine() -> Engine:
    """Sync engine for Celery tasks."""
    settings = get_settings()
    sync_url = to_sync_url(settings.database_url)
    return create_engine(
        sync_url,
        echo=settings.database_echo,
        **_pool_options(sync_url, pool_size=2, pool_recycle=1800),
    )


@lru_cache
def get_sync_session_maker() -> sessionmaker[Session]:
    return sessionmaker(get_sync_engine(), class_=Session, expire_on_commit=False)


async def init_db() -> None:
    """Create tables, retrying while the database comes up."""
    max_retries = 5
    retry_delay = 2  # seconds

    for attempt in range(max_retries):
        try:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(
                    f"DB connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {retry_delay} seconds..."
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_async_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@contextmanager
def get_sync_db() -> Generator[Session, None, None]:
    """Get a synchronous database session for Celery tasks."""
    session = get_sync_session_maker()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
