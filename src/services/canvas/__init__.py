# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Canvas LMS integration."""

from src.services.canvas.client import CanvasClient, sis_user_id

__all__ = ["CanvasClient", "sis_user_id"]
