# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for PostgreSQL connections.

This package provides SQLAlchemy async access to the mirrored CRM tables and
the local course linkage.

Example:
    from src.infrastructure.database import get_worker_db_manager

    async with get_worker_db_manager().get_session() as session:
        ...
"""

from src.infrastructure.database.connection import (
    DatabaseError,
    DatabaseManager,
    clear_thread_db_connections,
    get_worker_db_manager,
    reset_worker_db_manager,
)

__all__ = [
    "DatabaseError",
    "DatabaseManager",
    "clear_thread_db_connections",
    "get_worker_db_manager",
    "reset_worker_db_manager",
]
