"""
Database connection management with async SQLAlchemy.

Supports both SQLite (development, paper runs) and PostgreSQL (production).
The session manager is created once by the application and injected into
the state store, market reader and audit sink; there is no module-level
instance.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, StaticPool

from ..config.schema import DatabaseConfig
from ..utils.logging import get_logger
from .models import Base

logger = get_logger(__name__)


class DatabaseSessionManager:
    """
    Manages database connections and sessions.

    Usage:
        manager = DatabaseSessionManager()
        await manager.init(config)

        async with manager.session() as session:
            # Use session; commits on exit, rolls back on error
            pass

        await manager.close()
    """

    def __init__(self):
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    async def init(self, config: DatabaseConfig, create_tables: bool = True) -> None:
        """
        Initialize database engine and optionally create tables.

        Args:
            config: Database configuration
            create_tables: Run metadata.create_all after connecting
        """
        connection_url = config.get_connection_url()

        if config.is_memory:
            # One shared connection, otherwise every session sees an empty database
            pool_kwargs = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        elif connection_url.startswith("sqlite"):
            pool_kwargs = {"poolclass": NullPool}
        else:
            pool_kwargs = {
                "poolclass": AsyncAdaptedQueuePool,
                "pool_size": config.pool_size,
                "max_overflow": config.max_overflow,
                "pool_pre_ping": True,
            }

        self._engine = create_async_engine(connection_url, echo=False, **pool_kwargs)

        self._sessionmaker = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info(
            "database_initialized",
            driver=config.driver,
            memory=config.is_memory,
            pool_size=config.pool_size if config.driver != "sqlite" else "N/A",
        )

    async def close(self) -> None:
        """Close all database connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("database_closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a database session as a transactional context manager.

        Usage:
            async with manager.session() as session:
                result = await session.execute(query)
        """
        if self._sessionmaker is None:
            raise RuntimeError("Database not initialized. Call init() first.")

        session = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("database_ping_failed", error=str(e))
            return False

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """Get the database engine."""
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine
