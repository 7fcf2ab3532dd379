# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Zoom meeting registration integration."""

from src.services.zoom.client import ZoomClient
from src.services.zoom.exceptions import (
    ZoomHostRegistrationError,
    ZoomMeetingNotFoundError,
    ZoomRateLimitError,
)

__all__ = [
    "ZoomClient",
    "ZoomHostRegistrationError",
    "ZoomMeetingNotFoundError",
    "ZoomRateLimitError",
]
