"""
Async SQLAlchemy engine / session factory.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config.settings import Settings
from database.models import Base


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the engine for ``settings.database_url``."""
    kwargs = {"echo": False}
    if settings.database_url.startswith("postgresql"):
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=3600)
    return create_async_engine(settings.database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
