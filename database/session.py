"""
Engine and transactions for the SQL session store.

Conversation state is one small row per WhatsApp user, so the only things
configured here are which async driver to use and how big the pool is.
`database.url` may be written with a sync scheme; it is mapped to the async
driver the project ships extras for:

  postgresql:// postgres://   → postgresql+asyncpg    (extra: postgres)
  mysql:// mysql+pymysql://   → mysql+aiomysql        (extra: mysql)
  sqlite://                   → sqlite+aiosqlite
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import DatabaseConfig, get_settings
from core.errors import PersistenceError
from database.models import Base

logger = structlog.get_logger()

ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mysql+pymysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def async_url(url: str) -> URL:
    parsed = make_url(url)
    driver = ASYNC_DRIVERS.get(parsed.drivername)
    return parsed.set(drivername=driver) if driver else parsed


def _engine_options(url: URL, config: DatabaseConfig, echo: bool) -> dict:
    if url.get_backend_name() == "sqlite":
        return {"echo": echo}
    return {
        "echo": echo,
        "pool_size": config.pool_size,
        "pool_recycle": config.pool_recycle_seconds,
        "pool_pre_ping": True,
    }


def get_engine(url: str = None) -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        target = async_url(url or settings.database.url)
        _engine = create_async_engine(target, **_engine_options(target, settings.database, settings.debug))
        logger.info("session_db_engine_created",
                    driver=target.drivername,
                    url=target.render_as_string(hide_password=True))
    return _engine


@asynccontextmanager
async def transaction() -> AsyncGenerator[AsyncSession, None]:
    """One commit per block; any error rolls back and propagates."""
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _sessionmaker() as db:
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise


async def init_db(url: str = None) -> None:
    """Create the sessions table. A database that cannot be reached fails startup."""
    engine = get_engine(url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError) as e:
        logger.error("session_db_init_failed", driver=engine.url.drivername, error=str(e))
        raise PersistenceError("Cannot initialize the session database", cause=e)
    logger.info("session_db_ready", driver=engine.url.drivername)


async def close_db() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
        logger.info("session_db_closed")
    _engine = None
    _sessionmaker = None
