# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exceptions shared by the downstream API clients.

Exception Hierarchy:
    DownstreamError (base)
    ├── DownstreamAPIError: The API answered with an error status
    │   └── DownstreamNotFoundError: 404 from the API
    └── DownstreamTimeoutError: No answer within the client timeout

The sync engine uses the message of these errors verbatim in participant
failure reports, so messages are written for operators.
"""


class DownstreamError(Exception):
    """Base exception for all downstream API errors.

    Attributes:
        message: Human-readable error description.
        system: Downstream system name (canvas, zoom, discord).
    """

    def __init__(self, message: str, system: str) -> None:
        """Initialize downstream error.

        Args:
            message: Human-readable error description.
            system: Downstream system name.
        """
        self.message = message
        self.system = system
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class DownstreamAPIError(DownstreamError):
    """Error status returned by a downstream API.

    Attributes:
        status_code: HTTP status code from API response.
        response_body: Raw response body if available.
    """

    def __init__(
        self,
        message: str,
        system: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        """Initialize downstream API error.

        Args:
            message: Human-readable error description.
            system: Downstream system name.
            status_code: HTTP status code from API response.
            response_body: Raw response body if available.
        """
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, system)

    def __str__(self) -> str:
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message


class DownstreamNotFoundError(DownstreamAPIError):
    """The requested downstream resource does not exist."""


class DownstreamTimeoutError(DownstreamError):
    """A downstream API did not answer in time."""
