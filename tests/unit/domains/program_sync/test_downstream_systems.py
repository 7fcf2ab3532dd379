# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the course, meeting and chat systems."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.domains.program_sync import (
    ChatSystem,
    CourseSystem,
    EnrollmentStatus,
    MeetingSystem,
    MembershipResult,
    ProgramContext,
)
from src.services.canvas import CanvasClient
from src.services.discord import DiscordClient
from src.services.exceptions import DownstreamAPIError, DownstreamNotFoundError
from src.services.zoom import ZoomClient, ZoomHostRegistrationError
from tests.fakes import make_course, make_participant, make_program


@pytest.fixture
def context() -> ProgramContext:
    return ProgramContext(program=make_program(), course=make_course())


@pytest.fixture
def canvas() -> MagicMock:
    client = MagicMock(spec=CanvasClient)
    client.list_sections = AsyncMock(return_value=[{"id": 7, "name": "Cohort Monday"}])
    client.create_section = AsyncMock(return_value={"id": 8, "name": "Cohort Tuesday"})
    client.list_user_enrollments = AsyncMock(return_value=[])
    client.get_user = AsyncMock(return_value={"id": 501})
    client.create_user = AsyncMock(return_value={"id": 502})
    client.enroll = AsyncMock(return_value={"id": 99})
    client.cancel_enrollment = AsyncMock(return_value={})
    return client


@pytest.fixture
def zoom() -> MagicMock:
    client = MagicMock(spec=ZoomClient)
    client.list_registrants = AsyncMock(return_value=[])
    client.add_registrant = AsyncMock(return_value={"registrant_id": "r1"})
    client.cancel_registrant = AsyncMock(return_value=True)
    return client


@pytest.fixture
def discord() -> MagicMock:
    client = MagicMock(spec=DiscordClient)
    client.get_member = AsyncMock(return_value={"roles": []})
    client.list_roles = AsyncMock(
        return_value=[
            {"id": "10", "name": "Fellow"},
            {"id": "11", "name": "Leadership Coach"},
            {"id": "12", "name": "Teaching Assistant"},
            {"id": "13", "name": "Moderator"},
        ]
    )
    client.add_member_role = AsyncMock()
    client.remove_member_role = AsyncMock()
    return client


class TestCourseSystem:
    """Tests for Canvas course enrollments."""

    def test_desired_roles(self, context: ProgramContext, canvas: MagicMock) -> None:
        """Test the role to enrollment type mapping."""
        system = CourseSystem(canvas)

        learner = system.desired_membership(context, make_participant("A"))
        coach = system.desired_membership(context, make_participant("B", role="coach"))
        withdrawn = system.desired_membership(
            context, make_participant("C", status=EnrollmentStatus.WITHDRAWN)
        )

        assert learner.role == "StudentEnrollment"
        assert learner.scopes == ("1234", "Cohort Monday")
        assert coach.role == "TaEnrollment"
        assert withdrawn.present is False
        assert system.desired_membership(context, make_participant("D", role="guest")) is None

    @pytest.mark.asyncio
    async def test_enrolls_new_participant(self, context: ProgramContext, canvas: MagicMock) -> None:
        """Test the first enrollment of a participant."""
        system = CourseSystem(canvas)
        participant = make_participant("A")
        desired = system.desired_membership(context, participant)

        result = await system.ensure_membership(context, participant, desired)

        assert result is MembershipResult.APPLIED
        canvas.enroll.assert_awaited_once_with(7, "contact-A", "StudentEnrollment")
        canvas.cancel_enrollment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_enrollment_is_unchanged(
        self, context: ProgramContext, canvas: MagicMock
    ) -> None:
        """Test that a matching enrollment is not written again."""
        canvas.list_user_enrollments.return_value = [
            {"id": 99, "type": "StudentEnrollment", "course_section_id": 7}
        ]
        system = CourseSystem(canvas)
        participant = make_participant("A")
        desired = system.desired_membership(context, participant)

        result = await system.ensure_membership(context, participant, desired)

        assert result is MembershipResult.UNCHANGED
        canvas.enroll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cohort_change_moves_enrollment(
        self, context: ProgramContext, canvas: MagicMock
    ) -> None:
        """Test moving a participant to a new, not yet existing section."""
        canvas.list_user_enrollments.return_value = [
            {"id": 99, "type": "StudentEnrollment", "course_section_id": 7}
        ]
        system = CourseSystem(canvas)
        participant = make_participant("A", section_key="Cohort Tuesday")
        desired = system.desired_membership(context, participant)

        result = await system.ensure_membership(context, participant, desired)

        assert result is MembershipResult.APPLIED
        canvas.create_section.assert_awaited_once_with("1234", "Cohort Tuesday")
        canvas.cancel_enrollment.assert_awaited_once_with("1234", 99)
        canvas.enroll.assert_awaited_once_with(8, "contact-A", "StudentEnrollment")

    @pytest.mark.asyncio
    async def test_withdrawn_participant_is_unenrolled(
        self, context: ProgramContext, canvas: MagicMock
    ) -> None:
        """Test removal of every enrollment."""
        canvas.list_user_enrollments.return_value = [
            {"id": 99, "type": "StudentEnrollment", "course_section_id": 7}
        ]
        system = CourseSystem(canvas)
        participant = make_participant("A", status=EnrollmentStatus.WITHDRAWN)
        desired = system.desired_membership(context, participant)

        result = await system.ensure_membership(context, participant, desired)

        assert result is MembershipResult.APPLIED
        canvas.cancel_enrollment.assert_awaited_once_with("1234", 99)
        canvas.enroll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_canvas_user_is_created_then_enrolled(
        self, context: ProgramContext, canvas: MagicMock
    ) -> None:
        """Test a contact that has never had a Canvas account."""
        canvas.list_user_enrollments.side_effect = DownstreamNotFoundError(
            "The specified resource does not exist.", "canvas", status_code=404
        )
        canvas.get_user.return_value = None
        system = CourseSystem(canvas)
        participant = make_participant("A", role="coach")

        result = await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        assert result is MembershipResult.APPLIED
        canvas.create_user.assert_awaited_once_with(
            "contact-A", "a@example.org", participant.first_name, participant.last_name
        )
        canvas.enroll.assert_awaited_once_with(7, "contact-A", "TaEnrollment")

    @pytest.mark.asyncio
    async def test_not_found_for_existing_user_is_raised(
        self, context: ProgramContext, canvas: MagicMock
    ) -> None:
        """Test that a missing course is not mistaken for a missing user."""
        canvas.list_user_enrollments.side_effect = DownstreamNotFoundError(
            "The specified resource does not exist.", "canvas", status_code=404
        )
        system = CourseSystem(canvas)
        participant = make_participant("A")

        with pytest.raises(DownstreamNotFoundError):
            await system.ensure_membership(
                context, participant, system.desired_membership(context, participant)
            )

        canvas.create_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_withdrawn_without_canvas_user_is_unchanged(
        self, context: ProgramContext, canvas: MagicMock
    ) -> None:
        """Test that no account is created just to remove it."""
        canvas.list_user_enrollments.side_effect = DownstreamNotFoundError(
            "The specified resource does not exist.", "canvas", status_code=404
        )
        canvas.get_user.return_value = None
        system = CourseSystem(canvas)
        participant = make_participant("A", status=EnrollmentStatus.WITHDRAWN)

        result = await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        assert result is MembershipResult.UNCHANGED
        canvas.create_user.assert_not_awaited()
        canvas.cancel_enrollment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sections_are_listed_once_per_run(
        self, context: ProgramContext, canvas: MagicMock
    ) -> None:
        """Test the per-run section cache."""
        system = CourseSystem(canvas)
        system.begin_run(context)
        for participant_id in ("A", "B"):
            participant = make_participant(participant_id)
            await system.ensure_membership(
                context, participant, system.desired_membership(context, participant)
            )

        assert canvas.list_sections.await_count == 1

        system.begin_run(context)
        participant = make_participant("C")
        await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )
        assert canvas.list_sections.await_count == 2


class TestMeetingSystem:
    """Tests for Zoom meeting registrations."""

    def test_no_meetings_means_unmanaged(self, context: ProgramContext, zoom: MagicMock) -> None:
        """Test participants without meetings."""
        system = MeetingSystem(zoom)

        assert system.desired_membership(context, make_participant("A", meeting_ids=())) is None

    def test_completed_participant_loses_registration(
        self, context: ProgramContext, zoom: MagicMock
    ) -> None:
        """Test that only active participants are registered."""
        system = MeetingSystem(zoom)

        desired = system.desired_membership(
            context, make_participant("A", status=EnrollmentStatus.COMPLETED)
        )

        assert desired.present is False

    @pytest.mark.asyncio
    async def test_registers_for_every_meeting(self, context: ProgramContext, zoom: MagicMock) -> None:
        """Test registration for each cohort meeting."""
        system = MeetingSystem(zoom)
        participant = make_participant("A", meeting_ids=("9002", "9001"))
        desired = system.desired_membership(context, participant)

        result = await system.ensure_membership(context, participant, desired)

        assert result is MembershipResult.APPLIED
        assert [call.args[0] for call in zoom.add_registrant.await_args_list] == ["9001", "9002"]

    @pytest.mark.asyncio
    async def test_existing_registration_is_unchanged(
        self, context: ProgramContext, zoom: MagicMock
    ) -> None:
        """Test that registered participants are left alone."""
        zoom.list_registrants.return_value = [{"email": "A@example.org", "id": "r1"}]
        system = MeetingSystem(zoom)
        participant = make_participant("A")

        result = await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        assert result is MembershipResult.UNCHANGED
        zoom.add_registrant.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_host_cannot_register(self, context: ProgramContext, zoom: MagicMock) -> None:
        """Test that meeting hosts are not an error."""
        zoom.add_registrant.side_effect = ZoomHostRegistrationError(
            "Host can not register", "zoom", status_code=400
        )
        system = MeetingSystem(zoom)
        participant = make_participant("A", role="coach")

        result = await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        assert result is MembershipResult.UNCHANGED

    @pytest.mark.asyncio
    async def test_withdrawn_registration_is_cancelled(
        self, context: ProgramContext, zoom: MagicMock
    ) -> None:
        """Test cancelling registrations."""
        zoom.list_registrants.return_value = [{"email": "A@example.org", "id": "r1"}]
        system = MeetingSystem(zoom)
        participant = make_participant("A", status=EnrollmentStatus.WITHDRAWN)

        result = await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        assert result is MembershipResult.APPLIED
        zoom.cancel_registrant.assert_awaited_once_with("9001", "a@example.org")

    @pytest.mark.asyncio
    async def test_registrants_are_listed_once_per_meeting_per_run(
        self, context: ProgramContext, zoom: MagicMock
    ) -> None:
        """Test that observing many participants does not relist the meeting."""
        zoom.list_registrants.return_value = [
            {"email": f"p{index}@example.org", "id": f"r{index}"} for index in range(600)
        ]
        system = MeetingSystem(zoom)
        system.begin_run(context)

        for index in range(50):
            participant = make_participant(f"P{index}", meeting_ids=("9001", "9002"))
            result = await system.ensure_membership(
                context, participant, system.desired_membership(context, participant)
            )
            assert result is MembershipResult.UNCHANGED

        assert zoom.list_registrants.await_count == 2
        zoom.add_registrant.assert_not_awaited()

        system.begin_run(context)
        participant = make_participant("P0")
        await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )
        assert zoom.list_registrants.await_count == 3

    @pytest.mark.asyncio
    async def test_new_registration_is_remembered_for_the_run(
        self, context: ProgramContext, zoom: MagicMock
    ) -> None:
        """Test that a registration made this run is observed as present."""
        system = MeetingSystem(zoom)
        system.begin_run(context)
        participant = make_participant("A")
        desired = system.desired_membership(context, participant)

        first = await system.ensure_membership(context, participant, desired)
        second = await system.ensure_membership(context, participant, desired)

        assert first is MembershipResult.APPLIED
        assert second is MembershipResult.UNCHANGED
        zoom.add_registrant.assert_awaited_once()
        assert zoom.list_registrants.await_count == 1


class TestChatSystem:
    """Tests for Discord roles."""

    def test_unlinked_user_is_unmanaged(self, context: ProgramContext, discord: MagicMock) -> None:
        """Test participants without a chat account."""
        system = ChatSystem(discord)

        assert system.desired_membership(context, make_participant("A", chat_user_id=None)) is None

    @pytest.mark.asyncio
    async def test_assigns_role(self, context: ProgramContext, discord: MagicMock) -> None:
        """Test adding the program role."""
        system = ChatSystem(discord)
        participant = make_participant("A")

        result = await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        assert result is MembershipResult.APPLIED
        discord.add_member_role.assert_awaited_once_with("777", "discord-A", "10")

    @pytest.mark.asyncio
    async def test_role_change_removes_old_role(
        self, context: ProgramContext, discord: MagicMock
    ) -> None:
        """Test switching between managed roles, leaving others alone."""
        discord.get_member.return_value = {"roles": ["10", "13"]}
        system = ChatSystem(discord)
        participant = make_participant("A", role="assistant")

        await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        discord.remove_member_role.assert_awaited_once_with("777", "discord-A", "10")
        discord.add_member_role.assert_awaited_once_with("777", "discord-A", "12")

    @pytest.mark.asyncio
    async def test_not_joined_is_deferred(self, context: ProgramContext, discord: MagicMock) -> None:
        """Test users that have not joined the server yet."""
        discord.get_member.return_value = None
        system = ChatSystem(discord)
        participant = make_participant("A")

        result = await system.ensure_membership(
            context, participant, system.desired_membership(context, participant)
        )

        assert result is MembershipResult.DEFERRED

    @pytest.mark.asyncio
    async def test_missing_server_role_is_an_error(
        self, context: ProgramContext, discord: MagicMock
    ) -> None:
        """Test a server without the program roles."""
        discord.list_roles.return_value = [{"id": "13", "name": "Moderator"}]
        system = ChatSystem(discord)
        participant = make_participant("A")

        with pytest.raises(DownstreamAPIError, match="no role named 'Fellow'"):
            await system.ensure_membership(
                context, participant, system.desired_membership(context, participant)
            )
