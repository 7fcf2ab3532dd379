# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Downstream systems reconciled by the program sync.

- CourseSystem: Canvas enrollment in the participant's cohort section
- MeetingSystem: Zoom registration for the participant's cohort meetings
- ChatSystem: Discord role on the program's server

Enrollment status decides presence: active participants get everything,
completed participants keep course and chat access but lose meeting
registrations, withdrawn participants are removed everywhere.
"""

import logging
from typing import Any, Optional

from src.domains.program_sync.downstream import (
    DesiredMembership,
    DownstreamSystem,
    MembershipResult,
    ProgramContext,
)
from src.domains.program_sync.models import (
    EnrollmentStatus,
    Participant,
    ParticipantRole,
)
from src.services.canvas.client import CanvasClient
from src.services.discord.client import DiscordClient
from src.services.exceptions import DownstreamAPIError, DownstreamNotFoundError
from src.services.zoom.client import ZoomClient
from src.services.zoom.exceptions import ZoomHostRegistrationError

logger = logging.getLogger(__name__)


class CourseSystem(DownstreamSystem):
    """Canvas course enrollments.

    Learners are students of their cohort section. Coaches and assistants
    are TAs of it, so the gradebook can be filtered down to their cohort.
    """

    name = "course"

    ENROLLMENT_TYPES = {
        ParticipantRole.LEARNER: "StudentEnrollment",
        ParticipantRole.COACH: "TaEnrollment",
        ParticipantRole.ASSISTANT: "TaEnrollment",
    }

    def __init__(self, client: CanvasClient) -> None:
        self._client = client
        self._section_ids: Optional[dict[str, int]] = None

    def begin_run(self, context: ProgramContext) -> None:
        self._section_ids = None

    def desired_membership(
        self,
        context: ProgramContext,
        participant: Participant,
    ) -> Optional[DesiredMembership]:
        role = participant.known_role
        if role is None:
            return None

        course_id = context.course.lms_course_id
        if participant.status is EnrollmentStatus.WITHDRAWN:
            return DesiredMembership(role=None, scopes=(course_id,))

        return DesiredMembership(
            role=self.ENROLLMENT_TYPES[role],
            scopes=(course_id, participant.section_key or ""),
        )

    async def _section_id(self, course_id: str, section_name: str) -> int:
        """Find the section by name, creating it on first use."""
        if self._section_ids is None:
            sections = await self._client.list_sections(course_id)
            self._section_ids = {section["name"]: section["id"] for section in sections}

        if section_name not in self._section_ids:
            section = await self._client.create_section(course_id, section_name)
            self._section_ids[section_name] = section["id"]

        return self._section_ids[section_name]

    async def observe(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
    ) -> Optional[list[dict[str, Any]]]:
        """Current enrollments, or None when the contact has no Canvas user yet."""
        try:
            return await self._client.list_user_enrollments(
                context.course.lms_course_id, participant.contact_id
            )
        except DownstreamNotFoundError:
            if await self._client.get_user(participant.contact_id) is not None:
                raise
            return None

    async def apply(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
        observed: Optional[list[dict[str, Any]]],
    ) -> MembershipResult:
        course_id = context.course.lms_course_id
        keep: Optional[dict[str, Any]] = None

        if observed is None:
            if not desired.present:
                return MembershipResult.UNCHANGED
            await self._client.create_user(
                participant.contact_id,
                participant.email,
                participant.first_name,
                participant.last_name,
            )
            observed = []

        if desired.present:
            section_id = await self._section_id(course_id, participant.section_key or "")
            for enrollment in observed:
                if (
                    keep is None
                    and enrollment.get("type") == desired.role
                    and enrollment.get("course_section_id") == section_id
                ):
                    keep = enrollment

        changed = False
        for enrollment in observed:
            if enrollment is keep:
                continue
            logger.info(
                "Removing %s %s of participant %s from course %s",
                enrollment.get("type"),
                enrollment.get("id"),
                participant.id,
                course_id,
            )
            await self._client.cancel_enrollment(course_id, enrollment["id"])
            changed = True

        if desired.present and keep is None:
            logger.info(
                "Enrolling participant %s as %s in section '%s' of course %s",
                participant.id,
                desired.role,
                participant.section_key,
                course_id,
            )
            await self._client.enroll(section_id, participant.contact_id, desired.role)
            changed = True

        return MembershipResult.APPLIED if changed else MembershipResult.UNCHANGED


class MeetingSystem(DownstreamSystem):
    """Zoom meeting registrations for the cohort's meetings.

    Each meeting's registrants are listed once per run and indexed by email.
    Registrations made or cancelled during the run update that index.
    """

    name = "meeting"

    REGISTRANT_ROLE = "registrant"

    def __init__(self, client: ZoomClient) -> None:
        self._client = client
        self._registrants: dict[str, dict[str, dict[str, Any]]] = {}

    def begin_run(self, context: ProgramContext) -> None:
        self._registrants = {}

    def desired_membership(
        self,
        context: ProgramContext,
        participant: Participant,
    ) -> Optional[DesiredMembership]:
        if participant.known_role is None or not participant.meeting_ids:
            return None

        scopes = tuple(sorted(participant.meeting_ids))
        if participant.status is not EnrollmentStatus.ACTIVE:
            return DesiredMembership(role=None, scopes=scopes)

        return DesiredMembership(
            role=self.REGISTRANT_ROLE,
            scopes=scopes,
            attributes=(
                ("email", participant.email.lower()),
                ("first_name", participant.first_name),
                ("last_name", participant.last_name),
            ),
        )

    async def _meeting_registrants(self, meeting_id: str) -> dict[str, dict[str, Any]]:
        if meeting_id not in self._registrants:
            registrants = await self._client.list_registrants(meeting_id)
            self._registrants[meeting_id] = {
                str(registrant.get("email", "")).lower(): registrant for registrant in registrants
            }
        return self._registrants[meeting_id]

    async def observe(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
    ) -> dict[str, Optional[dict[str, Any]]]:
        email = participant.email.lower()
        observed: dict[str, Optional[dict[str, Any]]] = {}
        for meeting_id in desired.scopes:
            registrants = await self._meeting_registrants(meeting_id)
            observed[meeting_id] = registrants.get(email)
        return observed

    async def apply(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
        observed: dict[str, Optional[dict[str, Any]]],
    ) -> MembershipResult:
        email = participant.email.lower()
        changed = False
        for meeting_id, registrant in observed.items():
            if desired.present and registrant is None:
                try:
                    registration = await self._client.add_registrant(
                        meeting_id,
                        participant.email,
                        participant.first_name,
                        participant.last_name,
                    )
                except ZoomHostRegistrationError:
                    logger.debug(
                        "Participant %s hosts meeting %s, no registration needed",
                        participant.id,
                        meeting_id,
                    )
                    continue
                self._registrants.setdefault(meeting_id, {})[email] = {
                    "email": participant.email,
                    **registration,
                }
                changed = True
            elif not desired.present and registrant is not None:
                if await self._client.cancel_registrant(meeting_id, participant.email):
                    changed = True
                self._registrants.get(meeting_id, {}).pop(email, None)

        return MembershipResult.APPLIED if changed else MembershipResult.UNCHANGED


class ChatSystem(DownstreamSystem):
    """Discord role on the program's chat server.

    Roles are looked up by name once per run. Participants who have not
    joined the server yet are deferred and checked again on the next run.
    """

    name = "chat"

    ROLE_NAMES = {
        ParticipantRole.LEARNER: "Fellow",
        ParticipantRole.COACH: "Leadership Coach",
        ParticipantRole.ASSISTANT: "Teaching Assistant",
    }

    def __init__(self, client: DiscordClient) -> None:
        self._client = client
        self._role_ids: Optional[dict[str, str]] = None

    def begin_run(self, context: ProgramContext) -> None:
        self._role_ids = None

    def desired_membership(
        self,
        context: ProgramContext,
        participant: Participant,
    ) -> Optional[DesiredMembership]:
        role = participant.known_role
        server_id = context.program.chat_server_id
        if role is None or not server_id or not participant.chat_user_id:
            return None

        if participant.status is EnrollmentStatus.WITHDRAWN:
            return DesiredMembership(role=None, scopes=(server_id,))

        return DesiredMembership(role=self.ROLE_NAMES[role], scopes=(server_id,))

    async def _managed_role_ids(self, server_id: str) -> dict[str, str]:
        if self._role_ids is None:
            roles = await self._client.list_roles(server_id)
            managed = set(self.ROLE_NAMES.values())
            self._role_ids = {
                role["name"]: str(role["id"]) for role in roles if role.get("name") in managed
            }
        return self._role_ids

    async def observe(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
    ) -> Optional[set[str]]:
        member = await self._client.get_member(
            context.program.chat_server_id, participant.chat_user_id
        )
        if member is None:
            return None
        return {str(role_id) for role_id in member.get("roles", [])}

    async def apply(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
        observed: Optional[set[str]],
    ) -> MembershipResult:
        server_id = context.program.chat_server_id
        user_id = participant.chat_user_id

        if observed is None:
            if desired.present:
                logger.debug("Participant %s has not joined chat server %s", participant.id, server_id)
                return MembershipResult.DEFERRED
            return MembershipResult.UNCHANGED

        role_ids = await self._managed_role_ids(server_id)
        wanted_id = None
        if desired.present:
            wanted_id = role_ids.get(desired.role)
            if wanted_id is None:
                raise DownstreamAPIError(
                    f"Chat server {server_id} has no role named '{desired.role}'",
                    "discord",
                )

        changed = False
        for role_id in role_ids.values():
            if role_id != wanted_id and role_id in observed:
                await self._client.remove_member_role(server_id, user_id, role_id)
                changed = True

        if wanted_id is not None and wanted_id not in observed:
            await self._client.add_member_role(server_id, user_id, wanted_id)
            changed = True

        return MembershipResult.APPLIED if changed else MembershipResult.UNCHANGED
