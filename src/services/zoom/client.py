# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Zoom API client for meeting registrations.

Authenticates with server-to-server OAuth. The access token is cached until
shortly before it expires.

Example:
    client = ZoomClient.from_settings(settings.zoom)
    registrants = await client.list_registrants("81234567890")
    if not any(r["email"] == "ada@example.org" for r in registrants):
        await client.add_registrant("81234567890", "ada@example.org", "Ada", "Lovelace")
"""

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

import httpx

from src.services.exceptions import DownstreamAPIError, DownstreamNotFoundError
from src.services.http import BaseAPIClient
from src.services.zoom.exceptions import (
    HOST_CANNOT_REGISTER_CODE,
    MEETING_DOES_NOT_EXIST_CODE,
    ZoomHostRegistrationError,
    ZoomMeetingNotFoundError,
    ZoomRateLimitError,
)
from src.utils.datetime import utc_now

if TYPE_CHECKING:
    from src.core.config.settings import ZoomSettings

logger = logging.getLogger(__name__)

PAGE_SIZE = 300
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)


class ZoomClient(BaseAPIClient):
    """Async client for the Zoom meeting registrant endpoints."""

    system = "zoom"

    def __init__(
        self,
        base_url: str,
        oauth_url: str,
        account_id: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the Zoom client.

        Args:
            base_url: Zoom REST API base URL.
            oauth_url: OAuth token endpoint.
            account_id: Zoom account id.
            client_id: OAuth client id.
            client_secret: OAuth client secret.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport for tests.
        """
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)
        self._oauth_url = oauth_url
        self._account_id = account_id
        self._credentials = (client_id, client_secret)
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: "ZoomSettings") -> "ZoomClient":
        return cls(
            base_url=settings.base_url,
            oauth_url=settings.oauth_url,
            account_id=settings.account_id,
            client_id=settings.client_id,
            client_secret=settings.client_secret.get_secret_value(),
            timeout=settings.timeout,
        )

    async def _ensure_token(self) -> str:
        now = utc_now()
        if self._access_token and self._token_expires_at and now < self._token_expires_at:
            return self._access_token

        response = await self._request(
            "POST",
            self._oauth_url,
            params={"grant_type": "account_credentials", "account_id": self._account_id},
            auth=self._credentials,
        )
        data = response.json()
        self._access_token = data["access_token"]
        self._token_expires_at = (
            now + timedelta(seconds=int(data.get("expires_in", 3600))) - TOKEN_EXPIRY_MARGIN
        )
        logger.debug("Obtained Zoom access token valid until %s", self._token_expires_at)
        return self._access_token

    async def _authorized(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self._ensure_token()
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
        try:
            return await self._request(method, path, headers=headers, **kwargs)
        except DownstreamAPIError as e:
            raise self._classify(e) from e

    def _classify(self, error: DownstreamAPIError) -> DownstreamAPIError:
        """Map Zoom error codes onto the Zoom exception types."""
        code = None
        if error.response_body:
            try:
                code = json.loads(error.response_body).get("code")
            except (ValueError, AttributeError):
                code = None

        if error.status_code == 429:
            cls: type[DownstreamAPIError] = ZoomRateLimitError
        elif code == MEETING_DOES_NOT_EXIST_CODE:
            cls = ZoomMeetingNotFoundError
        elif code == HOST_CANNOT_REGISTER_CODE:
            cls = ZoomHostRegistrationError
        else:
            return error
        return cls(
            error.message,
            self.system,
            status_code=error.status_code,
            response_body=error.response_body,
        )

    async def list_registrants(self, meeting_id: str) -> list[dict[str, Any]]:
        """List approved registrants of a meeting, following page tokens."""
        registrants: list[dict[str, Any]] = []
        params: dict[str, Any] = {"status": "approved", "page_size": PAGE_SIZE}
        while True:
            response = await self._authorized(
                "GET", f"/meetings/{meeting_id}/registrants", params=params
            )
            data = response.json()
            registrants.extend(data.get("registrants", []))
            next_token = data.get("next_page_token")
            if not next_token:
                return registrants
            params = {**params, "next_page_token": next_token}

    async def add_registrant(
        self,
        meeting_id: str,
        email: str,
        first_name: str,
        last_name: str,
    ) -> dict[str, Any]:
        """Register someone for a meeting.

        Zoom answers an existing registration with the same registrant, so
        this call is idempotent.

        Returns:
            Registration including registrant_id and join_url.
        """
        response = await self._authorized(
            "POST",
            f"/meetings/{meeting_id}/registrants",
            json={"email": email, "first_name": first_name, "last_name": last_name},
        )
        return response.json()

    async def cancel_registrant(self, meeting_id: str, email: str) -> bool:
        """Cancel a registration.

        A meeting that no longer exists counts as cancelled.

        Returns:
            True if Zoom accepted the cancellation, False if the meeting is gone.
        """
        try:
            await self._authorized(
                "PUT",
                f"/meetings/{meeting_id}/registrants/status",
                json={"action": "cancel", "registrants": [{"email": email}]},
            )
            return True
        except (ZoomMeetingNotFoundError, DownstreamNotFoundError):
            logger.debug("Meeting %s no longer exists, nothing to cancel", meeting_id)
            return False
