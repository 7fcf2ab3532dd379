# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification channels for delivering sync reports.

Usage:
    from src.infrastructure.notifications.channels import (
        EmailChannel,
        NotificationPayload,
    )

    channel = EmailChannel(settings.smtp)
    result = await channel.send(
        NotificationPayload(
            subject="Program sync completed",
            recipient_email="ops@example.org",
            text_body="...",
        )
    )
"""

from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    NotificationPayload,
)
from src.infrastructure.notifications.channels.email import EmailChannel

__all__ = [
    # Base types
    "BaseChannel",
    "ChannelResult",
    "ChannelType",
    "DeliveryStatus",
    "NotificationPayload",
    # Channels
    "EmailChannel",
]
