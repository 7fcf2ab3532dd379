# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the program sync Dramatiq actors.

Actors run synchronously here on the StubBroker, with the worker context
replaced by one built on in-memory stores and fake downstream systems.
"""

import asyncio
import os
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.domains.program_sync import (
    InMemorySyncStateStore,
    ProgramSyncCoordinator,
    ProgramSyncService,
)
from src.infrastructure.background.broker import Queues, get_broker
from src.infrastructure.background.tasks import (
    SyncWorkerContext,
    request_program_sync,
    reset_worker_context,
    sync_all_programs,
    sync_program,
)
from src.infrastructure.background.tasks import base as task_base
from src.infrastructure.database import connection
from src.infrastructure.locks import InMemoryLockStore, LockManager, lock_key
from tests.fakes import (
    PROGRAM_ID,
    FakeDataset,
    FakeSystem,
    make_course,
    make_participant,
    make_program,
)

CONTEXT_PATH = "src.infrastructure.background.tasks.program_sync.get_worker_context"


@pytest.fixture(autouse=True)
def clean_worker_state() -> Generator[None, None, None]:
    """Flush queued messages and close the thread's task loop after each test."""
    yield
    get_broker().flush_all()
    reset_worker_context()
    loop = getattr(task_base._thread_local, "event_loop", None)
    if loop is not None and not loop.is_closed():
        loop.close()
    asyncio.set_event_loop(None)


@pytest.fixture
def dataset() -> FakeDataset:
    return FakeDataset(
        make_program(),
        [make_participant("A"), make_participant("B")],
        make_course(),
        program_ids=["p1", "p2"],
    )


@pytest.fixture
def lock_manager() -> LockManager:
    return LockManager(InMemoryLockStore())


@pytest.fixture
def worker_context(dataset: FakeDataset, lock_manager: LockManager) -> SyncWorkerContext:
    service = ProgramSyncService(dataset, [FakeSystem("course")], InMemorySyncStateStore())
    coordinator = ProgramSyncCoordinator(lock_manager, service, refresh_lock=False)
    return SyncWorkerContext(MagicMock(), coordinator)


@pytest.fixture
def patched_context(worker_context: SyncWorkerContext) -> Generator[AsyncMock, None, None]:
    with patch(CONTEXT_PATH, new=AsyncMock(return_value=worker_context)) as get_context:
        yield get_context


class TestSyncProgramActor:
    """Tests for the sync_program actor."""

    def test_returns_outcome_summary(self, patched_context: AsyncMock) -> None:
        """Test a completed run."""
        result = sync_program(PROGRAM_ID)

        assert result["status"] == "completed"
        assert result["program_id"] == PROGRAM_ID
        assert result["synced_count"] == 2

    def test_locked_program(self, patched_context: AsyncMock, lock_manager: LockManager) -> None:
        """Test that a held lock drops the run."""
        asyncio.run(lock_manager.try_acquire(lock_key("sync", PROGRAM_ID), 600))

        result = sync_program(PROGRAM_ID, trigger="recurring")

        assert result == {"status": "locked", "program_id": PROGRAM_ID}

    def test_missing_program(self, patched_context: AsyncMock, dataset: FakeDataset) -> None:
        """Test that fatal errors are returned, not raised."""
        dataset.program = None

        result = sync_program(PROGRAM_ID)

        assert result["status"] == "aborted_fatal"
        assert result["fatal_error_kind"] == "program_not_found"

    def test_missing_course_configuration(
        self, patched_context: AsyncMock, dataset: FakeDataset
    ) -> None:
        """Test programs that are still being set up."""
        dataset.course = None

        result = sync_program(PROGRAM_ID)

        assert result["status"] == "aborted_fatal"
        assert result["fatal_error_kind"] == "missing_local_configuration"

    def test_context_failure(self) -> None:
        """Test that infrastructure errors are reported as failed."""
        with patch(CONTEXT_PATH, new=AsyncMock(side_effect=ConnectionError("redis down"))):
            result = sync_program(PROGRAM_ID)

        assert result == {"status": "failed", "program_id": PROGRAM_ID, "error": "redis down"}

    def test_force_flags_reach_the_engine(
        self, patched_context: AsyncMock, worker_context: SyncWorkerContext
    ) -> None:
        """Test that actor flags become sync options."""
        with patch.object(
            worker_context.coordinator, "sync_program", new=AsyncMock(return_value=None)
        ) as coordinator_sync:
            sync_program(PROGRAM_ID, "ops@example.org", force_chat_update=True)

        program_id, address, options, trigger = coordinator_sync.await_args.args
        assert (program_id, address) == (PROGRAM_ID, "ops@example.org")
        assert options.force_chat_update is True
        assert options.force_course_update is False
        assert trigger.name == "on_demand"


class TestSyncAllProgramsActor:
    """Tests for the recurring dispatcher actor."""

    def test_enqueues_each_program(self, patched_context: AsyncMock) -> None:
        """Test that every current and future program gets a message."""
        result = sync_all_programs()

        assert result == {
            "status": "dispatched",
            "program_count": 2,
            "enqueued_count": 2,
            "failed_program_ids": [],
        }
        assert get_broker().queues[Queues.SYNC].qsize() == 2

    def test_disabled(self, patched_context: AsyncMock) -> None:
        """Test that the dispatcher honors the enabled flag."""
        with patch.dict(os.environ, {"SYNC_ENABLED": "false"}):
            result = sync_all_programs()

        assert result == {"status": "disabled"}
        patched_context.assert_not_awaited()

    def test_dispatch_locked(self, patched_context: AsyncMock, lock_manager: LockManager) -> None:
        """Test two schedulers firing at once."""
        asyncio.run(lock_manager.try_acquire(lock_key("sync", "dispatch"), 120))

        result = sync_all_programs()

        assert result == {"status": "locked"}
        assert get_broker().queues[Queues.SYNC].qsize() == 0


class TestRequestProgramSync:
    """Tests for the on-demand entry point."""

    def test_enqueues_on_demand_message(self) -> None:
        """Test the message sent for an operator request."""
        message = request_program_sync(" a0X5e000001 ", "ops@example.org", force_meeting_update=True)

        assert message.actor_name == "sync_program"
        assert message.queue_name == Queues.SYNC
        assert message.args == ("a0X5e000001", "ops@example.org", False, True, False)
        assert message.kwargs == {"trigger": "on_demand"}

    @pytest.mark.parametrize("program_id", ["", "   "])
    def test_rejects_empty_program_id(self, program_id: str) -> None:
        """Test input validation."""
        with pytest.raises(ValueError, match="program_id is required"):
            request_program_sync(program_id)


class TestResetWorkerContext:
    """Tests for reset_worker_context."""

    def test_forgets_thread_database_manager(self) -> None:
        """Test that the thread's engine is dropped with its context."""
        manager = MagicMock()
        connection._thread_local_manager.db_manager = manager

        reset_worker_context()

        manager.forget_engine.assert_called_once_with()
        assert connection._thread_local_manager.db_manager is None
