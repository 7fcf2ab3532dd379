# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Program sync background tasks.

This module provides the Dramatiq actors that run program syncs. Both
triggers end up in sync_program, which runs the engine under the
per-program lock:

Tasks:
    - sync_program: Sync one program (recurring or on demand)
    - sync_all_programs: Recurring dispatcher, enqueues sync_program for
      every current and future program

Retries are disabled for both actors. A run that failed is retried by the
next recurring trigger.

Example:
    >>> from src.infrastructure.background.tasks import request_program_sync
    >>> request_program_sync("a0X5e000001", notify_address="ops@example.org")
"""

import asyncio
import logging
import threading
from typing import Any, Optional

import dramatiq

from src.core.config import Settings, get_settings
from src.domains.program_sync import (
    ChatSystem,
    CourseSystem,
    InMemorySyncStateStore,
    MeetingSystem,
    ProgramSyncCoordinator,
    ProgramSyncService,
    RedisSyncStateStore,
    SqlMirroredDataset,
    SyncFatalError,
    SyncOptions,
    SyncStateStore,
    TriggerConfig,
)
from src.infrastructure.background.broker import (
    Priority,
    Queues,
    is_test_mode,
    setup_dramatiq,
)
from src.infrastructure.background.tasks.base import run_async
from src.infrastructure.cache import RedisClient
from src.infrastructure.database.connection import get_worker_db_manager, reset_worker_db_manager
from src.infrastructure.locks import (
    ConflictPolicy,
    InMemoryLockStore,
    LockManager,
    LockStore,
    RedisLockStore,
)
from src.infrastructure.notifications import EmailChannel, SyncNotificationDispatcher
from src.infrastructure.telemetry import get_sync_metrics
from src.services.canvas import CanvasClient
from src.services.discord import DiscordClient
from src.services.zoom import ZoomClient

setup_dramatiq()

logger = logging.getLogger(__name__)

# Shared by every worker thread of the process when Redis is not used
_memory_lock_store = InMemoryLockStore()
_memory_state_store = InMemorySyncStateStore()


class SyncWorkerContext:
    """Clients and services of one worker thread.

    Everything here is bound to the event loop it was built on. run_async
    keeps one loop per thread, so the context is built once per thread and
    rebuilt only if that loop is replaced.

    Attributes:
        loop: Event loop the context was built on.
        coordinator: Program sync coordinator.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        coordinator: ProgramSyncCoordinator,
        redis_client: Optional[RedisClient] = None,
        http_clients: tuple = (),
    ) -> None:
        self.loop = loop
        self.coordinator = coordinator
        self._redis_client = redis_client
        self._http_clients = http_clients

    @classmethod
    async def create(cls, settings: Settings) -> "SyncWorkerContext":
        """Build the sync stack from settings.

        Uses the in-process lock and state stores in test mode or when
        SYNC_LOCK_BACKEND=memory, and Redis otherwise.
        """
        metrics = get_sync_metrics()

        redis_client: Optional[RedisClient] = None
        lock_store: LockStore
        state_store: SyncStateStore
        if is_test_mode() or settings.sync.lock_backend == "memory":
            lock_store = _memory_lock_store
            state_store = _memory_state_store
        else:
            redis_client = RedisClient(settings)
            await redis_client.connect()
            lock_store = RedisLockStore(redis_client)
            state_store = RedisSyncStateStore(
                redis_client,
                prefix=settings.sync.lock_prefix,
                ttl_seconds=settings.sync.state_ttl_days * 86400,
            )

        lock_manager = LockManager(
            lock_store,
            conflict_policy=ConflictPolicy(settings.sync.conflict_policy),
            metrics=metrics,
        )

        canvas = CanvasClient.from_settings(settings.canvas)
        zoom = ZoomClient.from_settings(settings.zoom)
        discord = DiscordClient.from_settings(settings.discord)

        service = ProgramSyncService(
            dataset=SqlMirroredDataset(get_worker_db_manager().get_session),
            systems=[CourseSystem(canvas), MeetingSystem(zoom), ChatSystem(discord)],
            state_store=state_store,
        )
        coordinator = ProgramSyncCoordinator(
            lock_manager,
            service,
            dispatcher=SyncNotificationDispatcher(EmailChannel(settings.smtp), metrics),
            metrics=metrics,
            refresh_lock=settings.sync.refresh_lock,
            quiet_missing_configuration=not settings.is_production,
        )

        logger.debug("Sync worker context created for thread %s", threading.current_thread().name)
        return cls(
            asyncio.get_running_loop(),
            coordinator,
            redis_client=redis_client,
            http_clients=(canvas, zoom, discord),
        )

    async def close(self) -> None:
        """Close the clients owned by this context."""
        for client in self._http_clients:
            await client.close()
        if self._redis_client is not None:
            await self._redis_client.close()


_thread_local = threading.local()


async def get_worker_context() -> SyncWorkerContext:
    """Get the sync context of the current worker thread.

    Must be awaited inside run_async.
    """
    loop = asyncio.get_running_loop()
    context: Optional[SyncWorkerContext] = getattr(_thread_local, "context", None)
    if context is None or context.loop is not loop:
        context = await SyncWorkerContext.create(get_settings())
        _thread_local.context = context
    return context


def reset_worker_context() -> None:
    """Forget the current thread's context. Used by tests."""
    _thread_local.context = None
    reset_worker_db_manager()
    _memory_lock_store.clear()
    _memory_state_store.clear_all()


@dramatiq.actor(
    queue_name=Queues.SYNC,
    max_retries=0,
    time_limit=3600000,  # 60 minutes, longer than any lock TTL in use
    priority=Priority.LOW,
)
def sync_program(
    program_id: str,
    notify_address: Optional[str] = None,
    force_course_update: bool = False,
    force_meeting_update: bool = False,
    force_chat_update: bool = False,
    trigger: str = "on_demand",
) -> dict[str, Any]:
    """Sync one program's participants into the downstream systems.

    Args:
        program_id: External program id.
        notify_address: Operator email for the run report.
        force_course_update: Re-observe course enrollments.
        force_meeting_update: Re-observe meeting registrations.
        force_chat_update: Re-observe chat roles.
        trigger: "recurring" or "on_demand".

    Returns:
        Run summary with a status field.
    """
    settings = get_settings()
    logger.info("Program sync requested for %s (trigger=%s)", program_id, trigger)

    if trigger == "recurring":
        trigger_config = TriggerConfig.recurring(settings.sync)
    else:
        trigger_config = TriggerConfig.on_demand(settings.sync)
    options = SyncOptions(
        force_course_update=force_course_update,
        force_meeting_update=force_meeting_update,
        force_chat_update=force_chat_update,
    )

    async def _sync() -> Any:
        context = await get_worker_context()
        return await context.coordinator.sync_program(
            program_id, notify_address, options, trigger_config
        )

    try:
        outcome = run_async(_sync())
    except SyncFatalError as e:
        # Logged by the coordinator at a level chosen by the error kind
        return {
            "status": "aborted_fatal",
            "program_id": program_id,
            "fatal_error_kind": e.kind.value,
            "error": e.message,
        }
    except Exception as e:
        logger.error(
            "Program sync task failed for %s: %s",
            program_id,
            str(e),
            exc_info=True,
        )
        return {"status": "failed", "program_id": program_id, "error": str(e)}

    if outcome is None:
        return {"status": "locked", "program_id": program_id}

    logger.info(
        "Program sync for %s finished: %s",
        program_id,
        outcome.status.value,
    )
    return outcome.to_dict()


@dramatiq.actor(
    queue_name=Queues.SYNC,
    max_retries=0,
    time_limit=600000,  # 10 minutes (just enqueues tasks)
    priority=Priority.NORMAL,
)
def sync_all_programs() -> dict[str, Any]:
    """Enqueue sync_program for every current and future program.

    Returns:
        Execution statistics.
    """
    settings = get_settings()
    if not settings.sync.enabled:
        logger.info("Program sync is disabled in settings")
        return {"status": "disabled"}

    def _enqueue(program_id: str) -> None:
        sync_program.send(program_id, trigger="recurring")

    async def _dispatch() -> Any:
        context = await get_worker_context()
        return await context.coordinator.dispatch_all(
            _enqueue, TriggerConfig.dispatch(settings.sync)
        )

    try:
        result = run_async(_dispatch())
    except Exception as e:
        logger.error("Failed to dispatch program syncs: %s", str(e), exc_info=True)
        return {"status": "failed", "error": str(e)}

    if result is None:
        return {"status": "locked"}

    return {"status": "dispatched", **result.to_dict()}


def request_program_sync(
    program_id: str,
    notify_address: Optional[str] = None,
    force_course_update: bool = False,
    force_meeting_update: bool = False,
    force_chat_update: bool = False,
) -> dramatiq.Message:
    """Enqueue an on-demand sync for one program.

    Args:
        program_id: External program id.
        notify_address: Operator email for the run report.
        force_course_update: Re-observe course enrollments.
        force_meeting_update: Re-observe meeting registrations.
        force_chat_update: Re-observe chat roles.

    Returns:
        The enqueued message.

    Raises:
        ValueError: If program_id is empty.
    """
    if not program_id or not program_id.strip():
        raise ValueError("program_id is required")

    return sync_program.send(
        program_id.strip(),
        notify_address,
        force_course_update,
        force_meeting_update,
        force_chat_update,
        trigger="on_demand",
    )
