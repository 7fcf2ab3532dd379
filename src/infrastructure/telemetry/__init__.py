# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Telemetry infrastructure for CohortSync.

This package provides Prometheus metrics for sync runs and lock contention,
and the HTTP endpoint workers and the scheduler expose them on.
"""

from src.infrastructure.telemetry.metrics import (
    SyncMetrics,
    get_sync_metrics,
    start_metrics_server,
)

__all__ = ["SyncMetrics", "get_sync_metrics", "start_metrics_server"]
