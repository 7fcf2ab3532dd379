# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Prometheus metrics for program synchronization.

Metrics Collected:
    - sync_runs_total: Finished runs by terminal status
    - sync_run_duration_seconds: Run duration histogram by terminal status
    - sync_participants_total: Participant results by classification
    - sync_participant_failures_total: Per-system participant failures
    - sync_fatal_errors_total: Aborted runs by fatal error kind
    - sync_lock_conflicts_total: Lock contention by scope and trigger source
    - sync_notifications_total: Report emails by delivery status

Usage:
    from src.infrastructure.telemetry import get_sync_metrics, start_metrics_server

    start_metrics_server(9191)
    metrics = get_sync_metrics()
    metrics.record_lock_conflict(scope="program", source="recurring")
"""

import logging
from typing import TYPE_CHECKING, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

if TYPE_CHECKING:
    from src.domains.program_sync.outcome import SyncRunOutcome

logger = logging.getLogger(__name__)


class SyncMetrics:
    """Prometheus collectors for sync runs, failures and lock contention.

    Args:
        registry: Prometheus registry (default: global REGISTRY). Tests pass
            a fresh CollectorRegistry per instance.
        namespace: Metrics namespace prefix.
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        namespace: str = "cohortsync",
    ) -> None:
        self.registry = registry or REGISTRY
        self.namespace = namespace

        self.runs_total = Counter(
            f"{namespace}_sync_runs_total",
            "Total program sync runs by terminal status",
            ["status"],
            registry=self.registry,
        )

        self.run_duration = Histogram(
            f"{namespace}_sync_run_duration_seconds",
            "Program sync run duration",
            ["status"],
            buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0],
            registry=self.registry,
        )

        self.participants_total = Counter(
            f"{namespace}_sync_participants_total",
            "Participants processed by result",
            ["result"],
            registry=self.registry,
        )

        self.participant_failures = Counter(
            f"{namespace}_sync_participant_failures_total",
            "Participant reconciliation failures by downstream system",
            ["system"],
            registry=self.registry,
        )

        self.fatal_errors = Counter(
            f"{namespace}_sync_fatal_errors_total",
            "Runs aborted before touching participants",
            ["kind"],
            registry=self.registry,
        )

        self.lock_conflicts = Counter(
            f"{namespace}_sync_lock_conflicts_total",
            "Sync triggers dropped because the lock was held",
            ["scope", "source"],
            registry=self.registry,
        )

        self.notifications = Counter(
            f"{namespace}_sync_notifications_total",
            "Sync report emails by delivery status",
            ["status"],
            registry=self.registry,
        )

        logger.debug("Sync metrics initialized with namespace: %s", namespace)

    def record_outcome(self, outcome: "SyncRunOutcome") -> None:
        """Record a finalized run outcome.

        Args:
            outcome: Outcome in a terminal state.
        """
        status = outcome.status.value
        self.runs_total.labels(status=status).inc()
        if outcome.duration_seconds is not None:
            self.run_duration.labels(status=status).observe(outcome.duration_seconds)

        if outcome.fatal_error_kind is not None:
            self.fatal_errors.labels(kind=outcome.fatal_error_kind.value).inc()
            return

        self.participants_total.labels(result="synced").inc(outcome.synced_count)
        self.participants_total.labels(result="skipped").inc(outcome.skipped_count)
        self.participants_total.labels(result="failed").inc(outcome.failed_count)
        for failure in outcome.failures:
            for system in failure.errors:
                self.participant_failures.labels(system=system).inc()

    def record_lock_conflict(self, scope: str, source: str) -> None:
        """Record a trigger dropped because the lock was already held."""
        self.lock_conflicts.labels(scope=scope, source=source).inc()

    def record_notification(self, status: str) -> None:
        """Record a report email delivery status (sent, failed or skipped)."""
        self.notifications.labels(status=status).inc()


_sync_metrics: SyncMetrics | None = None


def get_sync_metrics() -> SyncMetrics:
    """Get the process-wide metrics instance registered on the global registry.

    Returns:
        SyncMetrics singleton.
    """
    global _sync_metrics
    if _sync_metrics is None:
        _sync_metrics = SyncMetrics()
    return _sync_metrics


def start_metrics_server(
    port: int,
    addr: str = "0.0.0.0",
    port_span: int = 1,
    registry: Optional[CollectorRegistry] = None,
) -> Optional[int]:
    """Expose a registry over HTTP for Prometheus to scrape.

    Worker processes started together share a base port. Each one binds the
    first free port in [port, port + port_span).

    Args:
        port: First port to try.
        addr: Address to bind.
        port_span: Number of consecutive ports to try.
        registry: Registry to expose (default: global REGISTRY).

    Returns:
        The bound port, or None if every port in the span was taken.
    """
    for candidate in range(port, port + max(port_span, 1)):
        try:
            start_http_server(candidate, addr=addr, registry=registry or REGISTRY)
        except OSError as e:
            logger.debug("Metrics port %d unavailable: %s", candidate, e)
            continue
        logger.info("Serving Prometheus metrics on %s:%d", addr, candidate)
        return candidate

    logger.warning(
        "No free metrics port in %d-%d, metrics are not exposed",
        port,
        port + max(port_span, 1) - 1,
    )
    return None
