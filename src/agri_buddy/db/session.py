"""
Async engine and session factory for the local store.
"""

import logging
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from agri_buddy.config import get_settings
from agri_buddy.db.models import Base

logger = logging.getLogger(__name__)


def create_engine(database_url: str | None = None, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine.

    An in-memory SQLite URL gets a single shared connection so every
    session sees the same database.
    """
    url = make_url(database_url or get_settings().database_url)
    if url.get_backend_name() == "sqlite":
        database = url.database or ""
        if database in ("", ":memory:"):
            return create_async_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready: {engine.url.render_as_string(hide_password=True)}")
