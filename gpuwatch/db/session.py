"""Database engine and session factory.

The `Database` object is created once by the process entry point and passed
to every component that needs storage; `close()` disposes the pool.
"""

import logging
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gpuwatch.config import settings
from gpuwatch.db.models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None, **engine_kwargs):
        self.url = url or settings.database_url
        if self.url.startswith("postgresql"):
            engine_kwargs.setdefault("pool_size", settings.database_pool_size)
            engine_kwargs.setdefault("pool_pre_ping", True)
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=settings.database_echo if echo is None else echo,
            **engine_kwargs,
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    def session(self) -> AsyncSession:
        """Open a new session (use as `async with db.session() as s:`)."""
        return self.session_factory()

    async def create_all(self) -> None:
        """Create tables directly from metadata (tests and local dev; prod uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        """Dispose the connection pool."""
        await self.engine.dispose()
        logger.info("Database engine disposed")

    async def get_db(self) -> AsyncIterator[AsyncSession]:
        """Yield a session, closing it afterwards (FastAPI dependency helper)."""
        async with self.session_factory() as session:
            yield session
