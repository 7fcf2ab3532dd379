# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq middleware for CohortSync workers."""

from src.infrastructure.background.middleware.metrics import MetricsMiddleware

__all__ = ["MetricsMiddleware"]
