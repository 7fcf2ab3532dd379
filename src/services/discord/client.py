# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discord REST client for guild member roles.

Only the bot endpoints needed to reconcile a member's program role are
covered. Adding a role a member already has, or removing one they lack, is
a no-op on Discord's side.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx

from src.services.exceptions import DownstreamNotFoundError
from src.services.http import BaseAPIClient

if TYPE_CHECKING:
    from src.core.config.settings import DiscordSettings

logger = logging.getLogger(__name__)


class DiscordClient(BaseAPIClient):
    """Async client for the Discord guild member endpoints."""

    system = "discord"

    def __init__(
        self,
        base_url: str,
        bot_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            base_url=base_url,
            headers={"Authorization": f"Bot {bot_token}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: "DiscordSettings") -> "DiscordClient":
        return cls(
            base_url=settings.base_url,
            bot_token=settings.bot_token.get_secret_value(),
            timeout=settings.timeout,
        )

    async def get_member(self, guild_id: str, user_id: str) -> Optional[dict[str, Any]]:
        """Get a guild member.

        Returns:
            The member, or None if the user has not joined the server.
        """
        try:
            return await self._get_json(f"/guilds/{guild_id}/members/{user_id}")
        except DownstreamNotFoundError:
            return None

    async def list_roles(self, guild_id: str) -> list[dict[str, Any]]:
        """List every role of a guild."""
        return await self._get_json(f"/guilds/{guild_id}/roles")

    async def add_member_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        logger.debug("Adding role %s to member %s in guild %s", role_id, user_id, guild_id)
        await self._request("PUT", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}")

    async def remove_member_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        logger.debug("Removing role %s from member %s in guild %s", role_id, user_id, guild_id)
        await self._request("DELETE", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}")
