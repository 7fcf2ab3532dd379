# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Distributed TTL lock manager.

The lock manager guarantees that at most one sync run per program is active
across the worker fleet. Acquisition never blocks: a trigger that finds the
lock held is dropped, and the next trigger tries again. A holder that
crashes leaves its lock behind until the TTL lapses, which is the only
recovery mechanism.

Example:
    >>> manager = LockManager(RedisLockStore(client))
    >>> result = await manager.try_acquire(lock_key("sync", "a0X5e000001"), 600)
    >>> if result.acquired:
    ...     try:
    ...         await run_sync()
    ...     finally:
    ...         await manager.release(result.key, result.holder_token)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Union

from src.infrastructure.locks.store import LockRecord, LockStore
from src.infrastructure.telemetry.metrics import SyncMetrics
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    """What to do when try_acquire finds a live lock.

    Neither policy retries or queues the trigger.
    """

    LOG = "log"
    RECORD = "record"


@dataclass(frozen=True)
class LockToken:
    """Proof of lock ownership returned by a successful acquire.

    Attributes:
        key: Lock key.
        holder_token: Unique token required to release or refresh.
        acquired_at: When the lock was acquired.
        expires_at: When the lock lapses unless refreshed.
        ttl_seconds: TTL the lock was acquired with.
    """

    key: str
    holder_token: str
    acquired_at: datetime
    expires_at: datetime
    ttl_seconds: int

    @property
    def acquired(self) -> bool:
        return True


@dataclass(frozen=True)
class LockConflict:
    """Result of an acquire attempt that found a live lock.

    Attributes:
        key: Lock key.
        held_until: Expiry of the current holder's lock, when readable.
    """

    key: str
    held_until: Optional[datetime] = None

    @property
    def acquired(self) -> bool:
        return False


LockResult = Union[LockToken, LockConflict]


def lock_key(prefix: str, program_id: str) -> str:
    """Build the lock key for a program.

    The key depends on the program id only, so every trigger for the same
    program competes for the same lock whatever its options.

    Args:
        prefix: Lock namespace, e.g. "sync".
        program_id: External program id.

    Returns:
        Lock key such as "sync:a0X5e000001".
    """
    return f"{prefix}:{program_id}"


class LockManager:
    """Acquires, refreshes and releases TTL-bounded locks.

    Args:
        store: Backend holding the lock records.
        clock: Returns the current UTC time.
        conflict_policy: Default policy when a lock is already held.
        metrics: Metrics sink for lock conflicts under the record policy.
    """

    def __init__(
        self,
        store: LockStore,
        clock: Callable[[], datetime] = utc_now,
        conflict_policy: ConflictPolicy = ConflictPolicy.RECORD,
        metrics: Optional[SyncMetrics] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._conflict_policy = conflict_policy
        self._metrics = metrics

    async def try_acquire(
        self,
        key: str,
        ttl_seconds: int,
        *,
        scope: str = "program",
        source: str = "unknown",
        policy: Optional[ConflictPolicy] = None,
    ) -> LockResult:
        """Try to take the lock without waiting.

        Args:
            key: Lock key.
            ttl_seconds: Lock lifetime.
            scope: Label for what the lock protects (program, dispatch).
            source: Label for the trigger that asked (recurring, on_demand).
            policy: Overrides the manager's default conflict policy.

        Returns:
            LockToken if acquired, LockConflict if a live lock exists.

        Raises:
            ValueError: If ttl_seconds is not positive.
            RedisError: If the store is unreachable.
        """
        if ttl_seconds <= 0:
            raise ValueError(f"Lock TTL must be positive, got {ttl_seconds}")

        now = self._clock()
        token = LockToken(
            key=key,
            holder_token=uuid.uuid4().hex,
            acquired_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            ttl_seconds=ttl_seconds,
        )
        record = LockRecord(holder_token=token.holder_token, expires_at=token.expires_at)

        if await self._store.create(key, record, ttl_seconds * 1000):
            logger.debug("Acquired lock %s (ttl=%ss)", key, ttl_seconds)
            return token

        current = await self._store.get(key)
        conflict = LockConflict(
            key=key,
            held_until=current.expires_at if current is not None else None,
        )
        self._handle_conflict(conflict, scope, source, policy or self._conflict_policy)
        return conflict

    def _handle_conflict(
        self,
        conflict: LockConflict,
        scope: str,
        source: str,
        policy: ConflictPolicy,
    ) -> None:
        logger.info(
            "Lock %s is held until %s, dropping %s trigger",
            conflict.key,
            conflict.held_until.isoformat() if conflict.held_until else "unknown",
            source,
        )
        if policy is ConflictPolicy.RECORD and self._metrics is not None:
            self._metrics.record_lock_conflict(scope=scope, source=source)

    async def release(self, key: str, holder_token: str) -> bool:
        """Release the lock if the token still matches.

        A stale token (the lock expired and was taken by someone else) or an
        absent lock is a no-op.

        Args:
            key: Lock key.
            holder_token: Token from the LockToken.

        Returns:
            True if this call removed the lock.
        """
        released = await self._store.delete_if_holder(key, holder_token)
        if released:
            logger.debug("Released lock %s", key)
        else:
            logger.warning("Lock %s was no longer held by this run at release", key)
        return released

    async def refresh(self, key: str, holder_token: str, ttl_seconds: int) -> bool:
        """Extend the lock TTL while the caller still holds it.

        Args:
            key: Lock key.
            holder_token: Token from the LockToken.
            ttl_seconds: New lifetime counted from now.

        Returns:
            True if the lock was extended, False if it was lost.
        """
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        record = LockRecord(holder_token=holder_token, expires_at=expires_at)
        refreshed = await self._store.extend_if_holder(key, record, ttl_seconds * 1000)
        if refreshed:
            logger.debug("Refreshed lock %s until %s", key, expires_at.isoformat())
        else:
            logger.warning("Could not refresh lock %s, it is no longer held", key)
        return refreshed
