# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Distributed locks for program synchronization.

Example:
    from src.infrastructure.locks import LockManager, RedisLockStore, lock_key

    manager = LockManager(RedisLockStore(redis_client))
    result = await manager.try_acquire(lock_key("sync", program_id), 600)
"""

from src.infrastructure.locks.manager import (
    ConflictPolicy,
    LockConflict,
    LockManager,
    LockResult,
    LockToken,
    lock_key,
)
from src.infrastructure.locks.store import (
    InMemoryLockStore,
    LockRecord,
    LockStore,
    RedisLockStore,
)

__all__ = [
    # Manager
    "ConflictPolicy",
    "LockConflict",
    "LockManager",
    "LockResult",
    "LockToken",
    "lock_key",
    # Stores
    "InMemoryLockStore",
    "LockRecord",
    "LockStore",
    "RedisLockStore",
]
