# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared httpx plumbing for the downstream API clients.

Every client owns one httpx.AsyncClient bound to the worker thread's event
loop. HTTP failures are translated into the DownstreamError hierarchy so
callers never see httpx exceptions.
"""

import logging
from typing import Any, Optional

import httpx

from src.services.exceptions import (
    DownstreamAPIError,
    DownstreamNotFoundError,
    DownstreamTimeoutError,
)

logger = logging.getLogger(__name__)


class BaseAPIClient:
    """Async JSON API client.

    Attributes:
        system: Downstream system name used in errors and logs.

    Args:
        base_url: API base URL.
        headers: Default headers, typically authorization.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport. Tests pass httpx.MockTransport.
    """

    system = "downstream"

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json", **(headers or {})},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and raise for error statuses.

        Raises:
            DownstreamNotFoundError: On 404.
            DownstreamAPIError: On any other error status or transport failure.
            DownstreamTimeoutError: When the request times out.
        """
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            raise DownstreamTimeoutError(
                f"{self.system} request timed out: {method} {path}", self.system
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = e.response.text
            logger.debug("%s %s %s failed with %s: %s", self.system, method, path, status, body)
            error_cls = DownstreamNotFoundError if status == 404 else DownstreamAPIError
            raise error_cls(
                self._error_message(e.response) or f"{self.system} request failed: {method} {path}",
                self.system,
                status_code=status,
                response_body=body,
            ) from e
        except httpx.RequestError as e:
            raise DownstreamAPIError(
                f"{self.system} unreachable: {e}", self.system
            ) from e

    def _error_message(self, response: httpx.Response) -> Optional[str]:
        """Extract the API's own error message from an error response."""
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            message = data.get("message")
            if isinstance(message, str) and message:
                return message
        return None

    async def _get_json(self, path: str, **kwargs: Any) -> Any:
        response = await self._request("GET", path, **kwargs)
        return response.json()
