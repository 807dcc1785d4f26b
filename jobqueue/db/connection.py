"""
Database connection management.
Handles async SQLAlchemy engine and session creation for the SQL job store.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from jobqueue.db.models import Base

logger = logging.getLogger(__name__)


def create_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create an async database engine.

    SQLite URLs use the dialect's default pool, which takes no sizing
    arguments.

    Args:
        database_url: Async SQLAlchemy URL.
        pool_size: Connection pool size for server databases.
        max_overflow: Pool overflow for server databases.
        echo: Log emitted SQL.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        echo=echo,
        pool_pre_ping=True,
    )


class Database:
    """
    Explicit database handle owned by a single job store.

    Holds the engine and session factory; there is no module-level
    connection state.
    """

    def __init__(self, engine: AsyncEngine):
        """
        Initialize the handle.

        Args:
            engine: The async engine to use.
        """
        self.engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._schema_ready = False

    async def init(self) -> None:
        """
        Create the jobs table if it does not exist.
        Safe to call more than once.
        """
        if self._schema_ready:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._schema_ready = True
        logger.info("Database connection initialized")

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self.engine.dispose()
        self._schema_ready = False
        logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Context manager for a transactional session.

        Commits on normal exit and rolls back if the block raises.

        Yields:
            AsyncSession: An async database session.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
