# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors for CohortSync.

Usage:
    from src.infrastructure.background.tasks import (
        request_program_sync,
        sync_all_programs,
    )

    # Ask for an on-demand sync with a report email
    request_program_sync("a0X5e000001", notify_address="ops@example.org")

Running Workers:
    dramatiq src.infrastructure.background.tasks --processes 2 --threads 4
"""

from src.infrastructure.background.tasks.base import run_async
from src.infrastructure.background.tasks.program_sync import (
    SyncWorkerContext,
    get_worker_context,
    request_program_sync,
    reset_worker_context,
    sync_all_programs,
    sync_program,
)

__all__ = [
    # Program sync
    "sync_program",
    "sync_all_programs",
    "request_program_sync",
    "SyncWorkerContext",
    "get_worker_context",
    "reset_worker_context",
    # Utilities
    "run_async",
]
