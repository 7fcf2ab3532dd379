# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Sync report notifications for CohortSync.

Key Components:
- SyncNotificationDispatcher: Renders and delivers one report per run
- Channels: EmailChannel
- NotificationPayload: Data structure for notification content

Usage:
    from src.infrastructure.notifications import (
        EmailChannel,
        SyncNotificationDispatcher,
    )

    dispatcher = SyncNotificationDispatcher(EmailChannel(settings.smtp))
    await dispatcher.notify(outcome, "ops@example.org")

Configuration (environment variables):
- SMTP_HOST: SMTP server hostname
- SMTP_PORT: SMTP server port (default: 587)
- SMTP_USERNAME: SMTP authentication username
- SMTP_PASSWORD: SMTP authentication password
- SMTP_FROM_EMAIL: Sender email address
- SMTP_FROM_NAME: Sender display name
"""

from src.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    EmailChannel,
    NotificationPayload,
)
from src.infrastructure.notifications.service import SyncNotificationDispatcher

__all__ = [
    # Service
    "SyncNotificationDispatcher",
    # Channel types
    "BaseChannel",
    "ChannelResult",
    "ChannelType",
    "DeliveryStatus",
    "NotificationPayload",
    # Channels
    "EmailChannel",
]
