# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the distributed lock manager and the in-memory store."""

import asyncio

import pytest

from src.infrastructure.locks import (
    ConflictPolicy,
    InMemoryLockStore,
    LockConflict,
    LockManager,
    LockRecord,
    LockToken,
    lock_key,
)
from src.infrastructure.telemetry.metrics import SyncMetrics
from tests.fakes import FakeClock


def conflict_count(metrics: SyncMetrics, scope: str = "program", source: str = "recurring") -> float:
    value = metrics.registry.get_sample_value(
        "cohortsync_sync_lock_conflicts_total",
        {"scope": scope, "source": source},
    )
    return value or 0.0


@pytest.fixture
def store(clock: FakeClock) -> InMemoryLockStore:
    return InMemoryLockStore(clock=clock)


@pytest.fixture
def manager(store: InMemoryLockStore, clock: FakeClock, metrics: SyncMetrics) -> LockManager:
    return LockManager(store, clock=clock, metrics=metrics)


class TestLockKey:
    """Tests for lock key derivation."""

    def test_key_is_prefix_and_program(self) -> None:
        """Test the documented key format."""
        assert lock_key("sync", "a0X5e000001") == "sync:a0X5e000001"

    def test_key_ignores_everything_but_program(self) -> None:
        """Test that two triggers for one program share one key."""
        assert lock_key("sync", "p1") == lock_key("sync", "p1")
        assert lock_key("sync", "p1") != lock_key("sync", "p2")


class TestTryAcquire:
    """Tests for LockManager.try_acquire."""

    @pytest.mark.asyncio
    async def test_acquire_free_lock(self, manager: LockManager, clock: FakeClock) -> None:
        """Test that a free lock is acquired with the requested TTL."""
        result = await manager.try_acquire("sync:p1", 600)

        assert isinstance(result, LockToken)
        assert result.acquired is True
        assert result.key == "sync:p1"
        assert result.acquired_at == clock.now
        assert (result.expires_at - result.acquired_at).total_seconds() == 600

    @pytest.mark.asyncio
    async def test_second_acquire_conflicts(self, manager: LockManager) -> None:
        """Test that a held lock cannot be acquired again."""
        first = await manager.try_acquire("sync:p1", 600)
        second = await manager.try_acquire("sync:p1", 600)

        assert first.acquired is True
        assert isinstance(second, LockConflict)
        assert second.acquired is False
        assert second.held_until == first.expires_at

    @pytest.mark.asyncio
    async def test_different_programs_do_not_conflict(self, manager: LockManager) -> None:
        """Test that locks are per key."""
        first = await manager.try_acquire("sync:p1", 600)
        second = await manager.try_acquire("sync:p2", 600)

        assert first.acquired and second.acquired

    @pytest.mark.asyncio
    async def test_concurrent_acquires_yield_one_holder(self, manager: LockManager) -> None:
        """Test mutual exclusion among racing triggers."""
        results = await asyncio.gather(
            *(manager.try_acquire("sync:p1", 600, source="recurring") for _ in range(10))
        )

        assert sum(1 for result in results if result.acquired) == 1

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self, manager: LockManager, clock: FakeClock) -> None:
        """Test that a crashed holder's lock lapses with its TTL."""
        first = await manager.try_acquire("sync:p1", 600)
        clock.advance(599)
        assert (await manager.try_acquire("sync:p1", 600)).acquired is False

        clock.advance(1)
        second = await manager.try_acquire("sync:p1", 600)

        assert second.acquired is True
        assert second.holder_token != first.holder_token

    @pytest.mark.asyncio
    async def test_non_positive_ttl_is_rejected(self, manager: LockManager) -> None:
        """Test TTL validation."""
        with pytest.raises(ValueError):
            await manager.try_acquire("sync:p1", 0)


class TestConflictPolicy:
    """Tests for conflict handling policies."""

    @pytest.mark.asyncio
    async def test_record_policy_counts_conflicts(
        self, manager: LockManager, metrics: SyncMetrics
    ) -> None:
        """Test that conflicts are counted with scope and source labels."""
        await manager.try_acquire("sync:p1", 600, source="recurring")
        await manager.try_acquire("sync:p1", 600, source="recurring")
        await manager.try_acquire("sync:p1", 600, source="on_demand")

        assert conflict_count(metrics, source="recurring") == 1
        assert conflict_count(metrics, source="on_demand") == 1

    @pytest.mark.asyncio
    async def test_log_policy_does_not_count(
        self, store: InMemoryLockStore, clock: FakeClock, metrics: SyncMetrics
    ) -> None:
        """Test that the log policy only logs."""
        manager = LockManager(store, clock=clock, conflict_policy=ConflictPolicy.LOG, metrics=metrics)

        await manager.try_acquire("sync:p1", 600, source="recurring")
        result = await manager.try_acquire("sync:p1", 600, source="recurring")

        assert result.acquired is False
        assert conflict_count(metrics) == 0

    @pytest.mark.asyncio
    async def test_policy_override_per_call(self, manager: LockManager, metrics: SyncMetrics) -> None:
        """Test that a call can override the default policy."""
        await manager.try_acquire("sync:p1", 600)
        await manager.try_acquire("sync:p1", 600, source="recurring", policy=ConflictPolicy.LOG)

        assert conflict_count(metrics) == 0


class TestRelease:
    """Tests for LockManager.release."""

    @pytest.mark.asyncio
    async def test_release_frees_the_lock(self, manager: LockManager) -> None:
        """Test that a released lock can be acquired again."""
        token = await manager.try_acquire("sync:p1", 600)

        assert await manager.release(token.key, token.holder_token) is True
        assert (await manager.try_acquire("sync:p1", 600)).acquired is True

    @pytest.mark.asyncio
    async def test_stale_token_does_not_release(
        self, manager: LockManager, clock: FakeClock
    ) -> None:
        """Test that a late release cannot free someone else's lock."""
        stale = await manager.try_acquire("sync:p1", 600)
        clock.advance(601)
        current = await manager.try_acquire("sync:p1", 600)

        assert await manager.release(stale.key, stale.holder_token) is False
        assert (await manager.try_acquire("sync:p1", 600)).acquired is False
        assert await manager.release(current.key, current.holder_token) is True

    @pytest.mark.asyncio
    async def test_release_absent_lock_is_noop(self, manager: LockManager) -> None:
        """Test releasing a lock nobody holds."""
        assert await manager.release("sync:p1", "nobody") is False


class TestRefresh:
    """Tests for LockManager.refresh."""

    @pytest.mark.asyncio
    async def test_refresh_extends_expiry(self, manager: LockManager, clock: FakeClock) -> None:
        """Test that a refreshed lock outlives its original TTL."""
        token = await manager.try_acquire("sync:p1", 600)
        clock.advance(300)

        assert await manager.refresh(token.key, token.holder_token, 600) is True

        clock.advance(400)
        assert (await manager.try_acquire("sync:p1", 600)).acquired is False

    @pytest.mark.asyncio
    async def test_refresh_lost_lock_fails(self, manager: LockManager, clock: FakeClock) -> None:
        """Test that an expired lock cannot be refreshed."""
        token = await manager.try_acquire("sync:p1", 600)
        clock.advance(600)

        assert await manager.refresh(token.key, token.holder_token, 600) is False


class TestLockRecord:
    """Tests for the stored lock document."""

    def test_json_round_trip(self, clock: FakeClock) -> None:
        """Test that a record survives serialization."""
        record = LockRecord(holder_token="abc", expires_at=clock.now)

        assert LockRecord.from_json(record.to_json()) == record

    def test_malformed_document(self) -> None:
        """Test that unreadable values are rejected."""
        with pytest.raises(ValueError):
            LockRecord.from_json('{"holder_token": "abc"}')
