# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the Canvas, Zoom and Discord API clients."""

import json

import httpx
import pytest

from src.services.canvas import CanvasClient
from src.services.discord import DiscordClient
from src.services.exceptions import (
    DownstreamAPIError,
    DownstreamNotFoundError,
    DownstreamTimeoutError,
)
from src.services.zoom import (
    ZoomClient,
    ZoomHostRegistrationError,
    ZoomMeetingNotFoundError,
    ZoomRateLimitError,
)


class Recorder:
    """MockTransport handler that records requests and answers from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"message": "no route"})
        # A fresh response per request, routes may be hit more than once
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


def canvas(routes: dict) -> tuple[CanvasClient, Recorder]:
    recorder = Recorder(routes)
    client = CanvasClient(
        "https://canvas.test", "token-1", transport=httpx.MockTransport(recorder)
    )
    return client, recorder


def zoom(routes: dict) -> tuple[ZoomClient, Recorder]:
    routes = {
        ("POST", "/oauth/token"): httpx.Response(
            200, json={"access_token": "zoom-token", "expires_in": 3600}
        ),
        **routes,
    }
    recorder = Recorder(routes)
    client = ZoomClient(
        base_url="https://api.zoom.test/v2",
        oauth_url="https://zoom.test/oauth/token",
        account_id="acct",
        client_id="cid",
        client_secret="secret",
        transport=httpx.MockTransport(recorder),
    )
    return client, recorder


def discord(routes: dict) -> tuple[DiscordClient, Recorder]:
    recorder = Recorder(routes)
    client = DiscordClient(
        "https://discord.test/api/v10", "bot-1", transport=httpx.MockTransport(recorder)
    )
    return client, recorder


class TestCanvasClient:
    """Tests for CanvasClient."""

    @pytest.mark.asyncio
    async def test_list_user_enrollments_by_sis_id(self) -> None:
        """Test that users are addressed by their CRM contact id."""
        client, recorder = canvas(
            {
                ("GET", "/api/v1/courses/1234/enrollments"): httpx.Response(
                    200, json=[{"id": 1, "type": "StudentEnrollment"}]
                )
            }
        )

        enrollments = await client.list_user_enrollments("1234", "003A")

        assert enrollments == [{"id": 1, "type": "StudentEnrollment"}]
        request = recorder.requests[0]
        assert request.url.params["user_id"] == "sis_user_id:003A"
        assert request.url.params.get_list("state[]") == ["active", "invited"]
        assert request.headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_list_sections_follows_pagination(self) -> None:
        """Test that Link headers are followed."""
        pages = iter(
            [
                httpx.Response(
                    200,
                    json=[{"id": 1, "name": "Cohort Monday"}],
                    headers={
                        "Link": '<https://canvas.test/api/v1/courses/1234/sections?page=2>; rel="next"'
                    },
                ),
                httpx.Response(200, json=[{"id": 2, "name": "Cohort Tuesday"}]),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return next(pages)

        client = CanvasClient(
            "https://canvas.test", "token-1", transport=httpx.MockTransport(handler)
        )

        sections = await client.list_sections("1234")

        assert [section["name"] for section in sections] == ["Cohort Monday", "Cohort Tuesday"]

    @pytest.mark.asyncio
    async def test_enroll_posts_enrollment(self) -> None:
        """Test the enrollment payload."""
        client, recorder = canvas(
            {("POST", "/api/v1/sections/7/enrollments"): httpx.Response(200, json={"id": 99})}
        )

        result = await client.enroll(7, "003A", "TaEnrollment")

        assert result == {"id": 99}
        body = json.loads(recorder.requests[0].content)
        assert body["enrollment"]["user_id"] == "sis_user_id:003A"
        assert body["enrollment"]["type"] == "TaEnrollment"
        assert body["enrollment"]["notify"] is False

    @pytest.mark.asyncio
    async def test_get_user_by_sis_id(self) -> None:
        """Test looking a contact's user up, and a contact without one."""
        client, recorder = canvas(
            {("GET", "/api/v1/users/sis_user_id:003A"): httpx.Response(200, json={"id": 501})}
        )

        assert await client.get_user("003A") == {"id": 501}
        assert await client.get_user("003B") is None
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_create_user_in_account(self) -> None:
        """Test the user creation payload."""
        recorder = Recorder(
            {("POST", "/api/v1/accounts/7/users"): httpx.Response(200, json={"id": 502})}
        )
        client = CanvasClient(
            "https://canvas.test",
            "token-1",
            account_id="7",
            transport=httpx.MockTransport(recorder),
        )

        user = await client.create_user("003A", "ada@example.org", "Ada", "Lovelace")

        assert user == {"id": 502}
        body = json.loads(recorder.requests[0].content)
        assert body["user"]["name"] == "Ada Lovelace"
        assert body["user"]["sortable_name"] == "Lovelace, Ada"
        assert body["user"]["skip_registration"] is True
        assert body["pseudonym"] == {
            "unique_id": "ada@example.org",
            "sis_user_id": "003A",
            "send_confirmation": False,
        }
        assert body["communication_channel"]["address"] == "ada@example.org"
        assert body["enable_sis_reactivation"] is True

    @pytest.mark.asyncio
    async def test_cancel_enrollment_deletes(self) -> None:
        """Test removing an enrollment."""
        client, recorder = canvas(
            {("DELETE", "/api/v1/courses/1234/enrollments/99"): httpx.Response(200, json={})}
        )

        await client.cancel_enrollment("1234", 99)

        assert recorder.requests[0].url.params["task"] == "delete"

    @pytest.mark.asyncio
    async def test_canvas_error_message_is_used(self) -> None:
        """Test that Canvas error bodies become the error message."""
        client, _ = canvas(
            {
                ("POST", "/api/v1/courses/1234/sections"): httpx.Response(
                    400, json={"errors": [{"message": "Name is too long"}]}
                )
            }
        )

        with pytest.raises(DownstreamAPIError) as exc_info:
            await client.create_section("1234", "x" * 300)

        assert str(exc_info.value) == "[400] Name is too long"
        assert exc_info.value.system == "canvas"

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        """Test that 404 has its own error type."""
        client, _ = canvas({})

        with pytest.raises(DownstreamNotFoundError):
            await client.list_sections("missing")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Test that timeouts are translated."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = CanvasClient(
            "https://canvas.test", "token-1", transport=httpx.MockTransport(handler)
        )

        with pytest.raises(DownstreamTimeoutError) as exc_info:
            await client.list_sections("1234")

        assert exc_info.value.system == "canvas"


class TestZoomClient:
    """Tests for ZoomClient."""

    @pytest.mark.asyncio
    async def test_token_is_fetched_once(self) -> None:
        """Test OAuth token caching."""
        client, recorder = zoom(
            {
                ("GET", "/v2/meetings/9001/registrants"): httpx.Response(
                    200, json={"registrants": [{"email": "Ada@Example.org", "id": "r1"}]}
                )
            }
        )

        first = await client.list_registrants("9001")
        second = await client.list_registrants("9001")

        assert first == second == [{"email": "Ada@Example.org", "id": "r1"}]
        assert len(recorder.calls("POST", "/oauth/token")) == 1
        registrant_call = recorder.calls("GET", "/v2/meetings/9001/registrants")[0]
        assert registrant_call.headers["Authorization"] == "Bearer zoom-token"

    @pytest.mark.asyncio
    async def test_list_registrants_follows_page_token(self) -> None:
        """Test next_page_token pagination."""
        pages = iter(
            [
                {"registrants": [{"email": "a@example.org"}], "next_page_token": "t2"},
                {"registrants": [{"email": "b@example.org"}], "next_page_token": ""},
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            return httpx.Response(200, json=next(pages))

        client = ZoomClient(
            base_url="https://api.zoom.test/v2",
            oauth_url="https://zoom.test/oauth/token",
            account_id="acct",
            client_id="cid",
            client_secret="secret",
            transport=httpx.MockTransport(handler),
        )

        registrants = await client.list_registrants("9001")

        assert [r["email"] for r in registrants] == ["a@example.org", "b@example.org"]

    @pytest.mark.asyncio
    async def test_meeting_not_found_code(self) -> None:
        """Test Zoom error code 3001."""
        client, _ = zoom(
            {
                ("POST", "/v2/meetings/9001/registrants"): httpx.Response(
                    404, json={"code": 3001, "message": "Meeting does not exist: 9001."}
                )
            }
        )

        with pytest.raises(ZoomMeetingNotFoundError):
            await client.add_registrant("9001", "a@example.org", "Ada", "Lovelace")

    @pytest.mark.asyncio
    async def test_host_registration_code(self) -> None:
        """Test Zoom error code 3027."""
        client, _ = zoom(
            {
                ("POST", "/v2/meetings/9001/registrants"): httpx.Response(
                    400, json={"code": 3027, "message": "Host can not register"}
                )
            }
        )

        with pytest.raises(ZoomHostRegistrationError):
            await client.add_registrant("9001", "host@example.org", "Host", "User")

    @pytest.mark.asyncio
    async def test_rate_limit(self) -> None:
        """Test that 429 is a rate limit error."""
        client, _ = zoom(
            {
                ("POST", "/v2/meetings/9001/registrants"): httpx.Response(
                    429, json={"code": 429, "message": "Too many requests"}
                )
            }
        )

        with pytest.raises(ZoomRateLimitError) as exc_info:
            await client.add_registrant("9001", "a@example.org", "Ada", "Lovelace")

        assert str(exc_info.value) == "[429] Too many requests"

    @pytest.mark.asyncio
    async def test_cancel_on_deleted_meeting(self) -> None:
        """Test that cancelling on a deleted meeting is not an error."""
        client, _ = zoom(
            {
                ("PUT", "/v2/meetings/9001/registrants/status"): httpx.Response(
                    404, json={"code": 3001, "message": "Meeting does not exist"}
                )
            }
        )

        assert await client.cancel_registrant("9001", "a@example.org") is False

    @pytest.mark.asyncio
    async def test_cancel_registrant(self) -> None:
        """Test the cancel payload."""
        client, recorder = zoom(
            {("PUT", "/v2/meetings/9001/registrants/status"): httpx.Response(204)}
        )

        assert await client.cancel_registrant("9001", "a@example.org") is True
        body = json.loads(recorder.calls("PUT", "/v2/meetings/9001/registrants/status")[0].content)
        assert body == {"action": "cancel", "registrants": [{"email": "a@example.org"}]}


class TestDiscordClient:
    """Tests for DiscordClient."""

    @pytest.mark.asyncio
    async def test_get_member(self) -> None:
        """Test fetching a guild member."""
        client, recorder = discord(
            {
                ("GET", "/api/v10/guilds/777/members/u1"): httpx.Response(
                    200, json={"roles": ["10"]}
                )
            }
        )

        member = await client.get_member("777", "u1")

        assert member == {"roles": ["10"]}
        assert recorder.requests[0].headers["Authorization"] == "Bot bot-1"

    @pytest.mark.asyncio
    async def test_member_not_joined(self) -> None:
        """Test that a user outside the server reads as None."""
        client, _ = discord({})

        assert await client.get_member("777", "u1") is None

    @pytest.mark.asyncio
    async def test_role_changes(self) -> None:
        """Test adding and removing roles."""
        client, recorder = discord(
            {
                ("PUT", "/api/v10/guilds/777/members/u1/roles/10"): httpx.Response(204),
                ("DELETE", "/api/v10/guilds/777/members/u1/roles/11"): httpx.Response(204),
            }
        )

        await client.add_member_role("777", "u1", "10")
        await client.remove_member_role("777", "u1", "11")

        assert [r.method for r in recorder.requests] == ["PUT", "DELETE"]
