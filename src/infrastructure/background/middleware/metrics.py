# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Prometheus metrics middleware for Dramatiq.

Collects per-actor message counters, durations and in-flight gauges for
the sync workers, and serves the process registry over HTTP once the
worker process has booted. Run-level sync metrics (outcomes, lock conflicts) live in
src.infrastructure.telemetry.metrics.
"""

import logging
import time
from typing import Any, Optional

import dramatiq
from dramatiq import Message, Middleware
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from src.infrastructure.telemetry.metrics import start_metrics_server

logger = logging.getLogger(__name__)


class MetricsMiddleware(Middleware):
    """Middleware that collects Prometheus metrics for Dramatiq actors.

    Metrics Collected:
    - dramatiq_messages_total: Total messages by actor, queue, status
    - dramatiq_message_duration_seconds: Processing time histogram
    - dramatiq_messages_in_flight: Currently processing messages gauge
    - dramatiq_messages_failed_total: Failed messages counter

    Usage:
        from src.infrastructure.background.middleware.metrics import MetricsMiddleware

        broker.add_middleware(MetricsMiddleware())
    """

    START_TIME_KEY = "_metrics_start_time"

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        namespace: str = "cohortsync",
        metrics_port: Optional[int] = None,
        metrics_addr: str = "0.0.0.0",
        port_span: int = 1,
    ) -> None:
        """Initialize metrics middleware.

        Args:
            registry: Prometheus registry (default: global REGISTRY).
            namespace: Metrics namespace prefix.
            metrics_port: First port of the worker metrics endpoint. None
                leaves the metrics unexposed.
            metrics_addr: Address the metrics endpoint binds.
            port_span: Ports to try from metrics_port, one per worker process.
        """
        self.registry = registry or REGISTRY
        self.namespace = namespace
        self.metrics_port = metrics_port
        self.metrics_addr = metrics_addr
        self.port_span = port_span
        self.bound_port: Optional[int] = None

        self.messages_total = Counter(
            f"{namespace}_dramatiq_messages_total",
            "Total Dramatiq messages processed",
            ["actor", "queue", "status"],
            registry=self.registry,
        )

        self.message_duration = Histogram(
            f"{namespace}_dramatiq_message_duration_seconds",
            "Dramatiq message processing duration",
            ["actor", "queue"],
            buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0],
            registry=self.registry,
        )

        self.messages_in_flight = Gauge(
            f"{namespace}_dramatiq_messages_in_flight",
            "Dramatiq messages currently being processed",
            ["actor", "queue"],
            registry=self.registry,
        )

        self.messages_failed = Counter(
            f"{namespace}_dramatiq_messages_failed_total",
            "Total failed Dramatiq messages",
            ["actor", "queue", "exception_type"],
            registry=self.registry,
        )

        logger.debug("Metrics middleware initialized with namespace: %s", namespace)

    def after_process_boot(self, broker: dramatiq.Broker) -> None:
        """Start the metrics endpoint of this worker process."""
        if self.metrics_port is None:
            return
        self.bound_port = start_metrics_server(
            self.metrics_port,
            addr=self.metrics_addr,
            port_span=self.port_span,
            registry=self.registry,
        )

    def before_process_message(
        self,
        broker: dramatiq.Broker,
        message: Message,
    ) -> None:
        """Record message start time and increment in-flight gauge."""
        message.options[self.START_TIME_KEY] = time.perf_counter()
        self.messages_in_flight.labels(
            actor=message.actor_name,
            queue=message.queue_name or "default",
        ).inc()

    def after_process_message(
        self,
        broker: dramatiq.Broker,
        message: Message,
        *,
        result: Any = None,
        exception: BaseException | None = None,
    ) -> None:
        """Record message completion metrics.

        Args:
            broker: Dramatiq broker.
            message: Message that was processed.
            result: Result of processing (if successful).
            exception: Exception raised (if failed).
        """
        actor_name = message.actor_name
        queue_name = message.queue_name or "default"
        start_time = message.options.pop(self.START_TIME_KEY, None)

        self.messages_in_flight.labels(actor=actor_name, queue=queue_name).dec()

        if start_time is not None:
            self.message_duration.labels(actor=actor_name, queue=queue_name).observe(
                time.perf_counter() - start_time
            )

        if exception:
            status = "failed"
            self.messages_failed.labels(
                actor=actor_name,
                queue=queue_name,
                exception_type=type(exception).__name__,
            ).inc()
        else:
            status = "success"

        self.messages_total.labels(actor=actor_name, queue=queue_name, status=status).inc()

    def after_skip_message(
        self,
        broker: dramatiq.Broker,
        message: Message,
    ) -> None:
        """Handle skipped messages."""
        actor_name = message.actor_name
        queue_name = message.queue_name or "default"

        if self.START_TIME_KEY in message.options:
            message.options.pop(self.START_TIME_KEY, None)
            self.messages_in_flight.labels(actor=actor_name, queue=queue_name).dec()

        self.messages_total.labels(actor=actor_name, queue=queue_name, status="skipped").inc()

