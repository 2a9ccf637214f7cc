"""
Async database connection manager using SQLAlchemy 2.0.

This module provides:
- Async database engine and session management
- Connection pooling with proper configuration (PostgreSQL)
- NullPool connections for local SQLite files
- Error handling and retry logic
- Health check functionality
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Dict, Any
from datetime import datetime

from sqlalchemy import text, event
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import NullPool
from sqlalchemy.exc import SQLAlchemyError

from database.models import Base
from config.database import DatabaseConfig

logger = logging.getLogger(__name__)


class DatabaseConnectionManager:
    """
    Async database connection manager with connection pooling,
    error handling, retry logic, and health checks.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._connected = False
        self._connection_attempts = 0
        self._last_health_check: Optional[datetime] = None
        self._health_check_failed_count = 0

    async def initialize(self) -> None:
        """
        Initialize the database engine and session factory.

        Raises:
            DatabaseConnectionError: If connection fails after all retries
        """
        logger.info("🔄 Initializing database connection...")
        logger.info(f"Database URL: {self.config.database_url.split('@')[-1]}")

        for attempt in range(self.config.max_retries):
            try:
                engine_kwargs = self.config.get_connection_params()
                if self.config.is_sqlite or not self.config.enable_connection_pooling:
                    engine_kwargs["poolclass"] = NullPool

                self.engine = create_async_engine(
                    self.config.database_url,
                    **engine_kwargs
                )

                self._setup_engine_events()

                # Test connection
                async with self.engine.begin() as conn:
                    result = await conn.execute(text("SELECT 1"))
                    result.fetchone()

                self.session_factory = async_sessionmaker(
                    bind=self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=True,
                )

                self._connected = True
                self._connection_attempts = attempt + 1
                self._last_health_check = datetime.now()

                logger.info(f"✅ Database connected successfully on attempt {attempt + 1}")
                return

            except (SQLAlchemyError, OSError) as e:
                self._connection_attempts = attempt + 1
                logger.warning(
                    f"Database connection attempt {attempt + 1}/{self.config.max_retries} failed: {e}"
                )
                if self.engine is not None:
                    await self.engine.dispose()
                    self.engine = None

                if attempt < self.config.max_retries - 1:
                    wait_time = min(self.config.retry_interval * (2 ** attempt), 30)
                    logger.info(f"⏳ Retrying in {wait_time} seconds...")
                    await asyncio.sleep(wait_time)
                else:
                    error_msg = f"❌ Failed to connect to database after {self.config.max_retries} attempts"
                    logger.error(error_msg)
                    raise DatabaseConnectionError(error_msg) from e

    def _setup_engine_events(self) -> None:
        """Setup SQLAlchemy engine event listeners for monitoring and debugging."""
        if not self.engine:
            return

        @event.listens_for(self.engine.sync_engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("🔗 New database connection established")

        if self.config.log_slow_queries:
            @event.listens_for(self.engine.sync_engine, "before_cursor_execute")
            def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
                context._query_start_time = datetime.now()

            @event.listens_for(self.engine.sync_engine, "after_cursor_execute")
            def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
                total = (datetime.now() - context._query_start_time).total_seconds()
                if total > self.config.slow_query_threshold:
                    logger.warning(f"🐌 Slow query ({total:.3f}s): {statement[:200]}...")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction handling.

        Usage:
            async with db_manager.get_session() as session:
                result = await session.execute(...)

        Yields:
            AsyncSession: Database session, committed on clean exit
        """
        if not self._connected or not self.session_factory:
            raise DatabaseConnectionError("Database not connected")

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.debug(f"Database session error, rolled back: {e}")
            raise
        finally:
            await session.close()

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform database health check.

        Returns:
            Dict with health check results
        """
        health_info = {
            "connected": self._connected,
            "last_check": self._last_health_check.isoformat() if self._last_health_check else None,
            "connection_attempts": self._connection_attempts,
            "failed_checks": self._health_check_failed_count,
        }

        if not self._connected or not self.engine:
            health_info["status"] = "disconnected"
            return health_info

        try:
            start_time = datetime.now()
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))

            response_time = (datetime.now() - start_time).total_seconds()
            health_info.update({
                "status": "healthy",
                "response_time": f"{response_time:.3f}s",
                "last_check": datetime.now().isoformat()
            })
            self._last_health_check = datetime.now()
            self._health_check_failed_count = 0

        except SQLAlchemyError as e:
            self._health_check_failed_count += 1
            health_info.update({
                "status": "unhealthy",
                "error": str(e),
                "last_check": datetime.now().isoformat()
            })
            logger.error(f"Database health check failed: {e}")

        return health_info

    async def create_tables(self, drop_existing: bool = False) -> None:
        """
        Create all database tables.

        Args:
            drop_existing: Whether to drop existing tables first
        """
        if not self.engine:
            raise DatabaseConnectionError("Database not connected")

        try:
            async with self.engine.begin() as conn:
                if drop_existing:
                    logger.warning("🗑️ Dropping existing tables...")
                    await conn.run_sync(Base.metadata.drop_all)

                logger.info("🏗️ Creating database tables...")
                await conn.run_sync(Base.metadata.create_all)

            logger.info("✅ Database tables created successfully")

        except SQLAlchemyError as e:
            logger.error(f"Failed to create tables: {e}")
            raise DatabaseOperationError(f"Table creation failed: {e}") from e

    async def close(self) -> None:
        """Close database connections and cleanup resources."""
        if self.engine:
            logger.info("🔄 Closing database connections...")
            await self.engine.dispose()
            self._connected = False
            logger.info("✅ Database connections closed")

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._connected and self.engine is not None


class DatabaseOperationError(Exception):
    """Raised when a database operation fails."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class DatabaseConnectionError(Exception):
    """Raised when database connection fails."""
    pass


# Global database manager instance
db_manager: Optional[DatabaseConnectionManager] = None


async def init_database(config: DatabaseConfig, create_tables: bool = True) -> DatabaseConnectionManager:
    """
    Initialize global database manager.

    Args:
        config: Database configuration
        create_tables: Whether to create missing tables

    Returns:
        DatabaseConnectionManager instance
    """
    global db_manager

    db_manager = DatabaseConnectionManager(config)
    await db_manager.initialize()
    if create_tables:
        await db_manager.create_tables()

    return db_manager


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session using the global database manager.

    Yields:
        AsyncSession: Database session
    """
    if not db_manager:
        raise DatabaseConnectionError("Database not initialized")

    async with db_manager.get_session() as session:
        yield session


async def close_database() -> None:
    """Close the global database manager."""
    global db_manager

    if db_manager:
        await db_manager.close()
        db_manager = None
