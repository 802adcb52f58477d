import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from ecomap.db.models import Base
from ecomap.ir.errors import StoreUnavailable

log = logging.getLogger(__name__)


def create_engine(database_url: str) -> AsyncEngine:
    if not database_url:
        raise StoreUnavailable("DATABASE_URL is not configured")
    return create_async_engine(database_url)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine, retries: int = 5, delay: float = 2.0) -> bool:
    """
    Create tables, waiting for the database to come up.
    Returns False instead of raising when it never does.
    """
    for attempt in range(retries):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            log.info("[DB] database connected")
            return True
        except (OperationalError, OSError):
            log.info("[DB] waiting for database... (%d/%d)", attempt + 1, retries)
            if attempt + 1 < retries:
                await asyncio.sleep(delay)

    # DO NOT crash the app
    log.warning("[DB] database not ready, running without persistence")
    return False


async def dispose(engine: Optional[AsyncEngine]) -> None:
    if engine is not None:
        await engine.dispose()
