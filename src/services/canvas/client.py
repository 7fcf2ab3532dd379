# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Canvas LMS API client.

Covers the user, enrollment and section endpoints the course sync needs.
Users are addressed by SIS id, which is the CRM contact id, so a person keeps
one Canvas user across every program they take part in.

Example:
    client = CanvasClient.from_settings(settings.canvas)
    enrollments = await client.list_user_enrollments("1234", "0035e00001")
    await client.close()
"""

import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx

from src.services.exceptions import DownstreamNotFoundError
from src.services.http import BaseAPIClient

if TYPE_CHECKING:
    from src.core.config.settings import CanvasSettings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
PAGE_SIZE = 100


def sis_user_id(contact_id: str) -> str:
    """Canvas user reference for a CRM contact."""
    return f"sis_user_id:{contact_id}"


class CanvasClient(BaseAPIClient):
    """Async client for the Canvas REST API."""

    system = "canvas"

    def __init__(
        self,
        base_url: str,
        api_token: str,
        account_id: str = "1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the Canvas client.

        Args:
            base_url: Canvas instance URL.
            api_token: Canvas API access token.
            account_id: Canvas account new users are created in.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport for tests.
        """
        super().__init__(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=timeout,
            transport=transport,
        )
        self._account_id = account_id

    @classmethod
    def from_settings(cls, settings: "CanvasSettings") -> "CanvasClient":
        return cls(
            base_url=settings.base_url,
            api_token=settings.api_token.get_secret_value(),
            account_id=settings.account_id,
            timeout=settings.timeout,
        )

    def _error_message(self, response: httpx.Response) -> Optional[str]:
        # Canvas wraps errors as {"errors": [{"message": ...}]}
        try:
            data = response.json()
        except ValueError:
            return None
        errors = data.get("errors") if isinstance(data, dict) else None
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return errors[0].get("message")
        return super()._error_message(response)

    async def _get_all_pages(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow Canvas Link header pagination and collect every item."""
        items: list[dict[str, Any]] = []
        response = await self._request("GET", path, params={**params, "per_page": PAGE_SIZE})
        items.extend(response.json())
        while "next" in response.links:
            response = await self._request("GET", response.links["next"]["url"])
            items.extend(response.json())
        return items

    async def get_user(self, contact_id: str) -> Optional[dict[str, Any]]:
        """Fetch a contact's Canvas user.

        Returns:
            The Canvas user, or None if no user has this SIS id.
        """
        try:
            return await self._get_json(f"{API_PREFIX}/users/{sis_user_id(contact_id)}")
        except DownstreamNotFoundError:
            return None

    async def create_user(
        self,
        contact_id: str,
        email: str,
        first_name: str,
        last_name: str,
    ) -> dict[str, Any]:
        """Create a Canvas user whose login is the contact's email.

        No registration or confirmation email is sent. A previously deleted
        user with the same SIS id is reactivated instead of duplicated.

        Returns:
            The created Canvas user.
        """
        logger.info("Creating Canvas user for contact %s", contact_id)
        response = await self._request(
            "POST",
            f"{API_PREFIX}/accounts/{self._account_id}/users",
            json={
                "user": {
                    "name": f"{first_name} {last_name}".strip(),
                    "short_name": first_name,
                    "sortable_name": f"{last_name}, {first_name}",
                    "skip_registration": True,
                },
                "pseudonym": {
                    "unique_id": email,
                    "sis_user_id": contact_id,
                    "send_confirmation": False,
                },
                "communication_channel": {
                    "type": "email",
                    "address": email,
                    "skip_confirmation": True,
                },
                "enable_sis_reactivation": True,
            },
        )
        return response.json()

    async def list_user_enrollments(self, course_id: str, contact_id: str) -> list[dict[str, Any]]:
        """List a contact's active and invited enrollments in a course.

        Args:
            course_id: Canvas course id.
            contact_id: CRM contact id (Canvas SIS user id).

        Returns:
            Canvas enrollment objects.
        """
        return await self._get_all_pages(
            f"{API_PREFIX}/courses/{course_id}/enrollments",
            {"user_id": sis_user_id(contact_id), "state[]": ["active", "invited"]},
        )

    async def list_sections(self, course_id: str) -> list[dict[str, Any]]:
        """List every section of a course."""
        return await self._get_all_pages(f"{API_PREFIX}/courses/{course_id}/sections", {})

    async def create_section(self, course_id: str, name: str) -> dict[str, Any]:
        """Create a section in a course.

        Returns:
            The created Canvas section.
        """
        logger.info("Creating Canvas section '%s' in course %s", name, course_id)
        response = await self._request(
            "POST",
            f"{API_PREFIX}/courses/{course_id}/sections",
            json={"course_section": {"name": name}},
        )
        return response.json()

    async def enroll(
        self,
        section_id: int,
        contact_id: str,
        enrollment_type: str,
        limit_privileges_to_section: bool = True,
    ) -> dict[str, Any]:
        """Enroll a contact into a section.

        Canvas treats re-enrolling an existing enrollment as an update, so
        this call is idempotent.

        Args:
            section_id: Canvas section id.
            contact_id: CRM contact id (Canvas SIS user id).
            enrollment_type: StudentEnrollment, TaEnrollment, ...
            limit_privileges_to_section: Restrict the user to the section.

        Returns:
            The Canvas enrollment.
        """
        response = await self._request(
            "POST",
            f"{API_PREFIX}/sections/{section_id}/enrollments",
            json={
                "enrollment": {
                    "user_id": sis_user_id(contact_id),
                    "type": enrollment_type,
                    "enrollment_state": "active",
                    "limit_privileges_to_course_section": limit_privileges_to_section,
                    "notify": False,
                }
            },
        )
        return response.json()

    async def cancel_enrollment(
        self,
        course_id: str,
        enrollment_id: int,
        task: str = "delete",
    ) -> dict[str, Any]:
        """Remove an enrollment.

        Args:
            course_id: Canvas course id.
            enrollment_id: Canvas enrollment id.
            task: One of conclude, delete, deactivate.

        Returns:
            The updated Canvas enrollment.
        """
        response = await self._request(
            "DELETE",
            f"{API_PREFIX}/courses/{course_id}/enrollments/{enrollment_id}",
            params={"task": task},
        )
        return response.json()
