# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discord chat server integration."""

from src.services.discord.client import DiscordClient

__all__ = ["DiscordClient"]
