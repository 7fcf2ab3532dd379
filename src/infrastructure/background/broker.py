# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq broker configuration for CohortSync.

This module provides background task processing with:
- Redis broker for message persistence and durability
- Prometheus metrics middleware for worker monitoring
- StubBroker when DRAMATIQ_TEST_MODE=true

Example:
    from src.infrastructure.background.broker import setup_dramatiq, get_broker

    # Setup at application startup
    broker = setup_dramatiq()

    # Get broker for manual operations
    broker = get_broker()
"""

import logging
import os

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker

from src.core.config import get_settings
from src.infrastructure.background.middleware import MetricsMiddleware

logger = logging.getLogger(__name__)


def is_test_mode() -> bool:
    """Check whether the in-process StubBroker should be used."""
    return os.getenv("DRAMATIQ_TEST_MODE", "false").lower() == "true"


class Queues:
    """Queue name constants for task routing."""

    DEFAULT = "default"
    SYNC = "sync"
    HIGH_PRIORITY = "high_priority"
    LOW_PRIORITY = "low_priority"

    ALL = (DEFAULT, SYNC, HIGH_PRIORITY, LOW_PRIORITY)


class Priority:
    """Task priority levels (lower number = higher priority)."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 3
    LOW = 5


class BrokerManager:
    """Manages Dramatiq broker lifecycle.

    Handles broker initialization, middleware setup, and shutdown.

    Attributes:
        _broker: The Dramatiq broker instance.
        _initialized: Whether the broker has been initialized.
    """

    def __init__(self) -> None:
        """Initialize broker manager."""
        self._broker: dramatiq.Broker | None = None
        self._initialized = False

    @property
    def broker(self) -> dramatiq.Broker:
        """Get the configured broker.

        Returns:
            The Dramatiq broker instance.

        Raises:
            RuntimeError: If broker not initialized.
        """
        if self._broker is None:
            raise RuntimeError("Broker not initialized. Call setup() first.")
        return self._broker

    def setup(self) -> dramatiq.Broker:
        """Setup and configure the Dramatiq broker.

        Returns:
            Configured broker instance.
        """
        if self._initialized:
            return self._broker  # type: ignore

        logger.info("Setting up Dramatiq broker...")

        if is_test_mode():
            self._broker = StubBroker()
            self._broker.emit_after("process_boot")
            logger.info("Using StubBroker for testing")
        else:
            redis_url = get_settings().redis.url
            self._broker = RedisBroker(url=redis_url)
            self._setup_middleware()
            logger.info("Redis broker initialized (url: %s)", redis_url.split("@")[-1])

        dramatiq.set_broker(self._broker)
        self._initialized = True

        return self._broker

    def _setup_middleware(self) -> None:
        """Add the Prometheus metrics middleware to the broker."""
        if self._broker is None:
            return

        worker = get_settings().worker
        metrics_middleware = MetricsMiddleware(
            metrics_port=worker.metrics_port if worker.metrics_enabled else None,
            metrics_addr=worker.metrics_addr,
            port_span=worker.processes,
        )
        self._broker.add_middleware(metrics_middleware)
        logger.info("Prometheus metrics middleware enabled")

    def shutdown(self) -> None:
        """Shutdown the broker."""
        if self._broker is not None:
            self._broker.close()
            self._broker = None
            self._initialized = False
            logger.info("Broker shutdown complete")


# Singleton instance
_broker_manager: BrokerManager | None = None


def get_broker_manager() -> BrokerManager:
    """Get the singleton broker manager."""
    global _broker_manager
    if _broker_manager is None:
        _broker_manager = BrokerManager()
    return _broker_manager


def setup_dramatiq() -> dramatiq.Broker:
    """Setup Dramatiq with configuration from settings.

    This should be called once at application startup. Task modules call
    it on import so that their actors bind to the configured broker.

    Returns:
        Configured broker.
    """
    return get_broker_manager().setup()


def get_broker() -> dramatiq.Broker:
    """Get the current Dramatiq broker.

    Raises:
        RuntimeError: If broker not initialized.
    """
    return get_broker_manager().broker


def shutdown_dramatiq() -> None:
    """Shutdown the Dramatiq broker.

    Should be called at application shutdown.
    """
    global _broker_manager
    if _broker_manager is not None:
        _broker_manager.shutdown()
        _broker_manager = None
