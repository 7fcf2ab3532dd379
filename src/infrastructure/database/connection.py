# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database connection management using SQLAlchemy async.

One database holds both the mirrored CRM tables (in their own schema) and the
local course linkage. Uses SQLAlchemy 2.0 async API with asyncpg driver.

Dramatiq worker threads each run their own event loop, and an async engine
is bound to the loop it was first used on, so workers get a thread-local
DatabaseManager from get_worker_db_manager().

Example:
    db = get_worker_db_manager()
    async with db.get_session() as session:
        result = await session.execute(select(Course))
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.infrastructure.database.models import MIRROR_SCHEMA

if TYPE_CHECKING:
    from src.core.config.settings import Settings

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the database error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class DatabaseManager:
    """Lazily creates and owns one async engine and its sessionmaker.

    Args:
        settings: Application settings containing database configuration.
    """

    def __init__(self, settings: "Settings") -> None:
        self._settings = settings
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    def _get_or_create_engine(self) -> AsyncEngine:
        if self._engine is None:
            db = self._settings.database
            try:
                self._engine = create_async_engine(
                    db.url,
                    pool_size=db.pool_size,
                    max_overflow=db.max_overflow,
                    pool_pre_ping=True,
                    pool_recycle=1800,
                    echo=False,
                    execution_options={
                        "schema_translate_map": {MIRROR_SCHEMA: db.mirror_schema}
                    },
                )
            except SQLAlchemyError as e:
                raise DatabaseError("Failed to create database engine", e) from e
            logger.debug("Created database engine for %s", db.host)
        return self._engine

    def _get_or_create_sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(
                bind=self._get_or_create_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._sessionmaker

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Get an async session.

        The session is committed on success and rolled back on exception.

        Yields:
            AsyncSession for database operations.

        Raises:
            DatabaseError: If a database operation fails.
        """
        sessionmaker = self._get_or_create_sessionmaker()

        async with sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError("Database operation failed", e) from e
            except Exception:
                await session.rollback()
                raise

    def forget_engine(self) -> None:
        """Drop the engine without disposing it.

        Used when the event loop the engine was bound to has been replaced.
        """
        self._engine = None
        self._sessionmaker = None

    async def close(self) -> None:
        """Dispose the engine and its connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
        self.forget_engine()


# =============================================================================
# WORKER THREAD-LOCAL MANAGER
# =============================================================================

_thread_local_manager = threading.local()


def get_worker_db_manager() -> DatabaseManager:
    """Get the DatabaseManager for the current worker thread.

    Returns:
        Thread-local DatabaseManager instance.
    """
    manager = getattr(_thread_local_manager, "db_manager", None)

    if manager is None:
        from src.core.config import get_settings

        manager = DatabaseManager(get_settings())
        _thread_local_manager.db_manager = manager

    return manager


def clear_thread_db_connections() -> None:
    """Forget the current thread's engine.

    Called by run_async() when a new event loop is created for a thread.
    Safe to call even if no manager exists for the thread.
    """
    manager = getattr(_thread_local_manager, "db_manager", None)
    if manager is not None:
        manager.forget_engine()


def reset_worker_db_manager() -> None:
    """Reset the worker DB manager for the current thread. Used by tests."""
    clear_thread_db_connections()
    _thread_local_manager.db_manager = None
