# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Zoom-specific API errors.

Zoom reports most problems as HTTP 4xx with a numeric "code" in the body.
The codes below change how a meeting registration is reconciled.
"""

from src.services.exceptions import DownstreamAPIError

MEETING_DOES_NOT_EXIST_CODE = 3001
HOST_CANNOT_REGISTER_CODE = 3027


class ZoomMeetingNotFoundError(DownstreamAPIError):
    """The meeting was deleted, usually because it is over."""


class ZoomHostRegistrationError(DownstreamAPIError):
    """The registrant is the host of the meeting and cannot register."""


class ZoomRateLimitError(DownstreamAPIError):
    """Too many registration requests for a meeting/email pair today."""
