# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler for periodic Dramatiq tasks.

Uses APScheduler for interval job scheduling integrated with Dramatiq
actors. The scheduler only enqueues messages; workers do the syncing.

Example:
    from src.infrastructure.background.scheduler import get_scheduler

    scheduler = get_scheduler()
    await scheduler.start()

    # Enqueue the recurring dispatcher every 5 minutes
    scheduler.add_interval_task(
        name="Program Sync",
        actor_name="sync_all_programs",
        seconds=300,
    )

Running:
    cohortsync-scheduler
"""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.core.config import get_settings
from src.infrastructure.telemetry.metrics import start_metrics_server
from src.utils.datetime import format_iso, utc_now
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)

PROGRAM_SYNC_TASK_NAME = "Program Sync"
PROGRAM_SYNC_ACTOR = "sync_all_programs"


@dataclass
class ScheduledTask:
    """Configuration for a scheduled Dramatiq task.

    Attributes:
        id: Unique task identifier.
        name: Human-readable task name.
        actor_name: Name of the Dramatiq actor to call.
        interval_seconds: Seconds between runs.
        args: Positional arguments for the actor.
        kwargs: Keyword arguments for the actor.
        enabled: Whether the task is enabled.
        last_run: Last run timestamp.
        run_count: Total number of runs.
        error_count: Number of failed runs.
    """

    name: str
    actor_name: str
    interval_seconds: int
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "actor_name": self.actor_name,
            "interval_seconds": self.interval_seconds,
            "enabled": self.enabled,
            "last_run": format_iso(self.last_run),
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


class DramatiqScheduler:
    """Scheduler for periodic Dramatiq task execution.

    Integrates APScheduler with Dramatiq actors for interval-based job
    scheduling.

    Attributes:
        _scheduler: APScheduler instance.
        _tasks: Dictionary of scheduled tasks.
        _running: Whether scheduler is running.
    """

    def __init__(self) -> None:
        """Initialize the scheduler."""
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    def _get_actor(self, actor_name: str) -> Callable[..., Any] | None:
        """Get a Dramatiq actor by name."""
        from src.infrastructure.background import tasks

        return getattr(tasks, actor_name, None)

    def add_interval_task(
        self,
        name: str,
        actor_name: str,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledTask:
        """Add an interval-scheduled task.

        Args:
            name: Task name.
            actor_name: Dramatiq actor to call.
            seconds: Interval seconds.
            minutes: Interval minutes.
            hours: Interval hours.
            args: Actor arguments.
            kwargs: Actor keyword arguments.
            enabled: Whether task is enabled.
            start_immediately: Run immediately on start.

        Returns:
            Created ScheduledTask.

        Raises:
            ValueError: If the interval is not positive.
        """
        interval_seconds = seconds + minutes * 60 + hours * 3600
        if interval_seconds <= 0:
            raise ValueError(f"Interval for task {name} must be positive")

        task = ScheduledTask(
            name=name,
            actor_name=actor_name,
            interval_seconds=interval_seconds,
            args=args,
            kwargs=kwargs or {},
            enabled=enabled,
        )

        self._tasks[task.id] = task

        if self._scheduler and enabled:
            job_options: dict[str, Any] = {}
            if start_immediately:
                job_options["next_run_time"] = utc_now()

            # A next_run_time of None would add the job paused
            self._scheduler.add_job(
                self._execute_task,
                trigger=IntervalTrigger(seconds=interval_seconds),
                args=[task.id],
                id=task.id,
                name=name,
                **job_options,
            )

        logger.info(
            "Added interval task: %s (every %dh %dm %ds)",
            name,
            hours,
            minutes,
            seconds,
        )
        return task

    async def _execute_task(self, task_id: str) -> None:
        """Execute a scheduled task.

        Args:
            task_id: ID of the task to execute.
        """
        task = self._tasks.get(task_id)
        if not task or not task.enabled:
            return

        logger.debug("Executing scheduled task: %s", task.name)

        try:
            actor = self._get_actor(task.actor_name)
            if actor is None:
                raise ValueError(f"Actor not found: {task.actor_name}")

            actor.send(*task.args, **task.kwargs)

            task.last_run = utc_now()
            task.run_count += 1

            logger.debug("Scheduled task %s sent to queue", task.name)

        except Exception as e:
            task.error_count += 1
            logger.error("Scheduled task %s failed: %s", task.name, str(e))

    def remove_task(self, task_id: str) -> bool:
        """Remove a scheduled task.

        Returns:
            True if removed.
        """
        if task_id not in self._tasks:
            return False

        if self._scheduler:
            try:
                self._scheduler.remove_job(task_id)
            except JobLookupError:
                logger.debug("Task %s had no scheduled job", task_id)

        del self._tasks[task_id]
        logger.info("Removed scheduled task: %s", task_id)
        return True

    def enable_task(self, task_id: str) -> bool:
        """Enable a scheduled task."""
        task = self._tasks.get(task_id)
        if not task:
            return False

        task.enabled = True
        if self._scheduler:
            try:
                self._scheduler.resume_job(task_id)
            except JobLookupError:
                logger.debug("Task %s had no scheduled job", task_id)

        return True

    def disable_task(self, task_id: str) -> bool:
        """Disable a scheduled task."""
        task = self._tasks.get(task_id)
        if not task:
            return False

        task.enabled = False
        if self._scheduler:
            try:
                self._scheduler.pause_job(task_id)
            except JobLookupError:
                logger.debug("Task %s had no scheduled job", task_id)

        return True

    def list_tasks(self) -> list[ScheduledTask]:
        """List all scheduled tasks."""
        return list(self._tasks.values())

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.start()
        self._running = True

        logger.info("Dramatiq scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Dramatiq scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics.

        Returns:
            Statistics dictionary.
        """
        return {
            "is_running": self._running,
            "task_count": len(self._tasks),
            "enabled_count": sum(1 for t in self._tasks.values() if t.enabled),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }


# Singleton instance
_scheduler: DramatiqScheduler | None = None


def get_scheduler() -> DramatiqScheduler:
    """Get the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = DramatiqScheduler()
    return _scheduler


async def start_scheduler() -> DramatiqScheduler:
    """Start the scheduler and register the recurring program sync.

    Returns:
        Started scheduler instance.
    """
    settings = get_settings()
    scheduler = get_scheduler()
    await scheduler.start()

    if settings.sync.enabled:
        scheduler.add_interval_task(
            name=PROGRAM_SYNC_TASK_NAME,
            actor_name=PROGRAM_SYNC_ACTOR,
            seconds=settings.sync.interval_seconds,
        )
    else:
        logger.info("Program sync is disabled, no recurring trigger registered")

    logger.info("Registered %d scheduled tasks", len(scheduler.list_tasks()))
    return scheduler


async def stop_scheduler() -> None:
    """Stop the scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


async def _run_until_stopped() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await start_scheduler()
    try:
        await stop_event.wait()
    finally:
        await stop_scheduler()


def main() -> None:
    """Run the scheduler process until SIGINT or SIGTERM."""
    settings = get_settings()
    setup_logging(settings)

    from src.infrastructure.background.broker import setup_dramatiq, shutdown_dramatiq

    setup_dramatiq()
    if settings.worker.metrics_enabled:
        start_metrics_server(
            settings.worker.scheduler_metrics_port, addr=settings.worker.metrics_addr
        )
    logger.info(
        "Starting CohortSync scheduler (environment=%s, interval=%ss)",
        settings.environment,
        settings.sync.interval_seconds,
    )
    try:
        asyncio.run(_run_until_stopped())
    finally:
        shutdown_dramatiq()


if __name__ == "__main__":
    main()
