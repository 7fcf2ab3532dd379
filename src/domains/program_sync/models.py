# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain types for program synchronization.

Programs and participants are read from the mirrored CRM dataset and are
never mutated by the sync engine. A linked course is the local record
connecting a program to its learning-management course.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ProgramStatus(str, Enum):
    """Program lifecycle status."""

    CURRENT = "current"
    FUTURE = "future"
    FORMER = "former"


class ParticipantRole(str, Enum):
    """Participant roles that have downstream mappings.

    The CRM may send other role values. Those have no mapping and the
    participant is skipped.
    """

    LEARNER = "learner"
    COACH = "coach"
    ASSISTANT = "assistant"


class EnrollmentStatus(str, Enum):
    """Participant enrollment status."""

    ACTIVE = "active"
    WITHDRAWN = "withdrawn"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Program:
    """A mirrored CRM program.

    Attributes:
        id: External program id.
        name: Program name.
        status: Lifecycle status.
        course_id: Linked learning-management course id.
        chat_server_id: Linked chat server id.
    """

    id: str
    name: str
    status: ProgramStatus
    course_id: Optional[str] = None
    chat_server_id: Optional[str] = None


@dataclass(frozen=True)
class Participant:
    """A mirrored CRM participant of one program.

    Attributes:
        id: External participant id.
        program_id: External id of the owning program.
        contact_id: Stable person identity across programs.
        email: Contact email.
        first_name: Contact first name.
        last_name: Contact last name.
        role: Raw role value from the CRM, see ParticipantRole.
        status: Enrollment status.
        section_key: Cohort schedule the participant belongs to.
        meeting_ids: Meetings the participant should be registered for.
        chat_user_id: Chat platform user id, when linked.
    """

    id: str
    program_id: str
    contact_id: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: EnrollmentStatus
    section_key: Optional[str] = None
    meeting_ids: tuple[str, ...] = ()
    chat_user_id: Optional[str] = None

    @property
    def known_role(self) -> Optional[ParticipantRole]:
        """The role as a ParticipantRole, or None when it has no mapping."""
        try:
            return ParticipantRole(self.role)
        except ValueError:
            return None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class LinkedCourse:
    """Local course record linked to a program.

    Attributes:
        id: Local course id.
        program_id: External program id.
        lms_course_id: Learning-management course id.
        name: Course name.
    """

    id: int
    program_id: str
    lms_course_id: str
    name: str = ""


@dataclass(frozen=True)
class SyncOptions:
    """Per-invocation sync options.

    Force flags make the engine observe a system even when the participant's
    desired state is unchanged since the last applied sync. They never
    change which lock a run competes for.

    Attributes:
        force_course_update: Re-check course enrollments.
        force_meeting_update: Re-check meeting registrations.
        force_chat_update: Re-check chat roles.
    """

    force_course_update: bool = False
    force_meeting_update: bool = False
    force_chat_update: bool = False

    def forces(self, system_name: str) -> bool:
        """Check whether the given downstream system is forced."""
        return {
            "course": self.force_course_update,
            "meeting": self.force_meeting_update,
            "chat": self.force_chat_update,
        }.get(system_name, False)
