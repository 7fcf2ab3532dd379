# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Run coordination for program syncs.

Both triggers (the recurring dispatcher and an operator's on-demand request)
go through ProgramSyncCoordinator.sync_program, which holds the per-program
lock for the whole run:

    try_acquire -> engine run -> report -> telemetry -> release

A trigger that finds the lock held is dropped. Nothing waits and nothing is
queued; the next trigger tries again.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from src.domains.program_sync.exceptions import MissingLocalConfigurationError, SyncFatalError
from src.domains.program_sync.models import SyncOptions
from src.domains.program_sync.outcome import SyncRunOutcome
from src.domains.program_sync.service import ProgramSyncService
from src.infrastructure.cache.redis_client import RedisError
from src.infrastructure.locks import ConflictPolicy, LockManager, LockToken, lock_key
from src.infrastructure.telemetry.metrics import SyncMetrics
from src.utils.datetime import utc_now
from src.utils.logging import bind_context, clear_context, get_logger

if TYPE_CHECKING:
    from src.core.config.settings import SyncSettings
    from src.infrastructure.notifications.service import SyncNotificationDispatcher

logger = logging.getLogger(__name__)
# Carries the program_id and trigger bound for the run
run_logger = get_logger(__name__)

DISPATCH_LOCK_NAME = "dispatch"


@dataclass(frozen=True)
class TriggerConfig:
    """Static configuration of one trigger type.

    Attributes:
        name: Trigger label used in logs and metrics.
        queue_name: Dramatiq queue the trigger's messages go to.
        lock_prefix: Prefix of the lock key.
        lock_scope: What the lock protects (program or dispatch).
        ttl_seconds: Lock lifetime.
        conflict_policy: What to do when the lock is held.
        max_retries: Dramatiq retries for the trigger's actor.
    """

    name: str = "on_demand"
    queue_name: str = "sync"
    lock_prefix: str = "sync"
    lock_scope: str = "program"
    ttl_seconds: int = 600
    conflict_policy: ConflictPolicy = ConflictPolicy.RECORD
    max_retries: int = 0

    @classmethod
    def recurring(cls, settings: "SyncSettings") -> "TriggerConfig":
        """Per-program runs enqueued by the recurring dispatcher."""
        return cls(
            name="recurring",
            lock_prefix=settings.lock_prefix,
            ttl_seconds=settings.lock_ttl_seconds,
            conflict_policy=ConflictPolicy(settings.conflict_policy),
        )

    @classmethod
    def on_demand(cls, settings: "SyncSettings") -> "TriggerConfig":
        """Runs requested by an operator."""
        return cls(
            name="on_demand",
            lock_prefix=settings.lock_prefix,
            ttl_seconds=settings.lock_ttl_seconds,
            conflict_policy=ConflictPolicy(settings.conflict_policy),
        )

    @classmethod
    def dispatch(cls, settings: "SyncSettings") -> "TriggerConfig":
        """The recurring dispatcher itself, locked fleet-wide."""
        return cls(
            name="recurring",
            lock_prefix=settings.lock_prefix,
            lock_scope="dispatch",
            ttl_seconds=settings.dispatch_lock_ttl_seconds,
            conflict_policy=ConflictPolicy(settings.conflict_policy),
        )


@dataclass
class DispatchResult:
    """Programs the recurring dispatcher enqueued."""

    program_count: int = 0
    enqueued: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "program_count": self.program_count,
            "enqueued_count": len(self.enqueued),
            "failed_program_ids": list(self.failed),
        }


class ProgramSyncCoordinator:
    """Runs the sync engine for one program under its lock.

    Args:
        lock_manager: Distributed lock manager.
        service: Sync engine.
        dispatcher: Report dispatcher for on-demand runs.
        metrics: Metrics sink for run outcomes.
        refresh_lock: Extend the lock once half its TTL has elapsed.
        quiet_missing_configuration: Log programs without a linked course at
            debug level. Set outside production, where such programs are
            usually still being set up.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        lock_manager: LockManager,
        service: ProgramSyncService,
        dispatcher: Optional["SyncNotificationDispatcher"] = None,
        metrics: Optional[SyncMetrics] = None,
        *,
        refresh_lock: bool = True,
        quiet_missing_configuration: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._locks = lock_manager
        self._service = service
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._refresh_lock = refresh_lock
        self._quiet_missing_configuration = quiet_missing_configuration
        self._clock = clock

    async def sync_program(
        self,
        program_id: str,
        notify_address: Optional[str] = None,
        options: Optional[SyncOptions] = None,
        trigger: Optional[TriggerConfig] = None,
    ) -> Optional[SyncRunOutcome]:
        """Sync one program if no other run holds its lock.

        Args:
            program_id: External program id.
            notify_address: Operator email for the run report.
            options: Force flags. They never change the lock key.
            trigger: Lock settings of the trigger that asked for the run.

        Returns:
            The run outcome, or None when another run holds the lock.

        Raises:
            SyncFatalError: The run aborted. The aborted outcome has already
                been reported and recorded.
        """
        trigger = trigger or TriggerConfig()
        key = lock_key(trigger.lock_prefix, program_id)
        lock = await self._locks.try_acquire(
            key,
            trigger.ttl_seconds,
            scope=trigger.lock_scope,
            source=trigger.name,
            policy=trigger.conflict_policy,
        )
        if not lock.acquired:
            return None

        bind_context(program_id=program_id, trigger=trigger.name)
        run_logger.info("sync_run_started", lock_key=key, ttl_seconds=trigger.ttl_seconds)
        refresher = self._start_refresher(lock) if self._refresh_lock else None
        started_at = self._clock()

        try:
            try:
                outcome = await self._service.run(program_id, options)
            except Exception as e:
                fatal = e if isinstance(e, SyncFatalError) else SyncFatalError(
                    f"{type(e).__name__}: {e}", program_id
                )
                outcome = SyncRunOutcome.aborted(program_id, fatal, started_at=started_at)
                logger.log(
                    self._abort_log_level(fatal),
                    "Sync of program %s aborted (%s): %s",
                    program_id,
                    fatal.kind.value,
                    fatal.message,
                )
                await self._report(outcome, notify_address)
                if fatal is e:
                    raise
                raise fatal from e

            await self._report(outcome, notify_address)
            run_logger.info(
                "sync_run_finished",
                status=outcome.status.value,
                synced=outcome.synced_count,
                skipped=outcome.skipped_count,
                failed=outcome.failed_count,
            )
            return outcome
        finally:
            if refresher is not None:
                refresher.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await refresher
            await self._release(lock)
            clear_context()

    async def dispatch_all(
        self,
        enqueue: Callable[[str], object],
        trigger: Optional[TriggerConfig] = None,
    ) -> Optional[DispatchResult]:
        """Enqueue a sync for every current and future program.

        Held under a fleet-wide lock so that two schedulers firing at once
        enqueue each program only once.

        Args:
            enqueue: Sends one per-program sync message.
            trigger: Lock settings of the dispatcher.

        Returns:
            What was enqueued, or None when another dispatcher holds the lock.
        """
        trigger = trigger or TriggerConfig(name="recurring", lock_scope="dispatch", ttl_seconds=120)
        lock = await self._locks.try_acquire(
            lock_key(trigger.lock_prefix, DISPATCH_LOCK_NAME),
            trigger.ttl_seconds,
            scope=trigger.lock_scope,
            source=trigger.name,
            policy=trigger.conflict_policy,
        )
        if not lock.acquired:
            return None

        try:
            program_ids = await self._service.dataset.current_and_future_program_ids()
            result = DispatchResult(program_count=len(program_ids))
            for program_id in program_ids:
                try:
                    enqueue(program_id)
                except Exception as e:
                    logger.error("Failed to enqueue sync for program %s: %s", program_id, e)
                    result.failed.append(program_id)
                else:
                    result.enqueued.append(program_id)
            logger.info(
                "Enqueued %d of %d program syncs",
                len(result.enqueued),
                result.program_count,
            )
            return result
        finally:
            await self._release(lock)

    def _abort_log_level(self, error: SyncFatalError) -> int:
        if self._quiet_missing_configuration and isinstance(error, MissingLocalConfigurationError):
            return logging.DEBUG
        return logging.ERROR

    async def _report(self, outcome: SyncRunOutcome, notify_address: Optional[str]) -> None:
        if self._dispatcher is not None:
            await self._dispatcher.notify(outcome, notify_address)
        if self._metrics is not None:
            self._metrics.record_outcome(outcome)

    async def _release(self, lock: LockToken) -> None:
        try:
            await self._locks.release(lock.key, lock.holder_token)
        except RedisError as e:
            logger.error("Could not release lock %s, it lapses with its TTL: %s", lock.key, e)

    def _start_refresher(self, lock: LockToken) -> asyncio.Task:
        return asyncio.create_task(self._keep_lock(lock), name=f"refresh:{lock.key}")

    async def _keep_lock(self, lock: LockToken) -> None:
        interval = lock.ttl_seconds / 2
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self._locks.refresh(lock.key, lock.holder_token, lock.ttl_seconds):
                    return
            except Exception as e:
                # The run goes on, the lock lapses with its TTL
                logger.warning(
                    "Stopped refreshing lock %s: %s",
                    lock.key,
                    e,
                    exc_info=not isinstance(e, RedisError),
                )
                return
