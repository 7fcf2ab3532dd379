# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read access to the mirrored CRM dataset.

The engine depends on the MirroredDataset protocol only. SqlMirroredDataset
reads the replicated CRM tables and the local course linkage with
SQLAlchemy and converts rows into domain objects.
"""

import logging
from typing import AsyncContextManager, Callable, Optional, Protocol

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.program_sync.models import (
    EnrollmentStatus,
    LinkedCourse,
    Participant,
    Program,
    ProgramStatus,
)
from src.infrastructure.database.models import (
    Course,
    MirrorCohort,
    MirrorCohortSchedule,
    MirrorContact,
    MirrorParticipant,
    MirrorProgram,
    MirrorRecordType,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

# Record type name of programs that are synced
COURSE_PROGRAM_RECORD_TYPE = "Course"

# CRM participant record types and the roles they map to
ROLE_BY_RECORD_TYPE = {
    "Fellow": "learner",
    "Leadership Coach": "coach",
    "Teaching Assistant": "assistant",
}

STATUS_BY_CRM_STATUS = {
    "Enrolled": EnrollmentStatus.ACTIVE,
    "Completed": EnrollmentStatus.COMPLETED,
    "Dropped": EnrollmentStatus.WITHDRAWN,
    "Failed": EnrollmentStatus.WITHDRAWN,
}

PROGRAM_STATUS_BY_CRM_STATUS = {
    "Current": ProgramStatus.CURRENT,
    "Future": ProgramStatus.FUTURE,
    "Former": ProgramStatus.FORMER,
}


class MirroredDataset(Protocol):
    """Read contract of the mirrored CRM data."""

    async def get_program(self, program_id: str) -> Optional[Program]:
        ...

    async def get_linked_course(self, program: Program) -> Optional[LinkedCourse]:
        ...

    async def list_participants(self, program_id: str) -> list[Participant]:
        ...

    async def current_and_future_program_ids(self) -> list[str]:
        ...


def _not_deleted(column):
    return or_(column.is_(None), column.is_(False))


def map_role(record_type_name: Optional[str]) -> str:
    """Map a CRM participant record type onto a role value.

    Unknown record types keep their (lowercased) name so the engine can
    report which role had no mapping.
    """
    if record_type_name is None:
        return "unknown"
    return ROLE_BY_RECORD_TYPE.get(record_type_name, record_type_name.lower())


def map_status(crm_status: Optional[str], participant_id: str) -> EnrollmentStatus:
    """Map a CRM participant status onto an enrollment status.

    Anything other than an enrolled or completed participant loses access.
    """
    status = STATUS_BY_CRM_STATUS.get(crm_status or "")
    if status is None:
        logger.warning(
            "Unknown status %r for participant %s, treating as withdrawn",
            crm_status,
            participant_id,
        )
        return EnrollmentStatus.WITHDRAWN
    return status


class SqlMirroredDataset:
    """MirroredDataset over the replicated CRM tables.

    Args:
        session_factory: Returns an async session context manager, usually
            DatabaseManager.get_session.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_program(self, program_id: str) -> Optional[Program]:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(MirrorProgram).where(
                        MirrorProgram.sfid == program_id,
                        _not_deleted(MirrorProgram.is_deleted),
                    )
                )
            ).scalar_one_or_none()

        if row is None:
            return None

        return Program(
            id=row.sfid,
            name=row.name or "",
            status=PROGRAM_STATUS_BY_CRM_STATUS.get(row.status or "", ProgramStatus.FORMER),
            course_id=row.canvas_course_id or None,
            chat_server_id=row.discord_server_id or None,
        )

    async def get_linked_course(self, program: Program) -> Optional[LinkedCourse]:
        if not program.course_id:
            return None

        async with self._session_factory() as session:
            course = (
                await session.execute(
                    select(Course).where(Course.canvas_course_id == program.course_id)
                )
            ).scalar_one_or_none()

        if course is None:
            return None

        if course.program_id and course.program_id != program.id:
            logger.warning(
                "Course %s is linked to program %s but program %s points at it",
                course.canvas_course_id,
                course.program_id,
                program.id,
            )

        return LinkedCourse(
            id=course.id,
            program_id=program.id,
            lms_course_id=course.canvas_course_id,
            name=course.name,
        )

    async def list_participants(self, program_id: str) -> list[Participant]:
        stmt = (
            select(
                MirrorParticipant.sfid,
                MirrorParticipant.contact_id,
                MirrorParticipant.status,
                MirrorContact.email,
                MirrorContact.first_name,
                MirrorContact.last_name,
                MirrorContact.discord_user_id,
                MirrorRecordType.name.label("record_type_name"),
                MirrorCohort.name.label("cohort_name"),
                MirrorCohortSchedule.zoom_meeting_id_1,
                MirrorCohortSchedule.zoom_meeting_id_2,
            )
            .join(MirrorContact, MirrorContact.sfid == MirrorParticipant.contact_id)
            .outerjoin(MirrorRecordType, MirrorRecordType.sfid == MirrorParticipant.record_type_id)
            .outerjoin(MirrorCohort, MirrorCohort.sfid == MirrorParticipant.cohort_id)
            .outerjoin(
                MirrorCohortSchedule,
                MirrorCohortSchedule.sfid == MirrorParticipant.cohort_schedule_id,
            )
            .where(
                MirrorParticipant.program_id == program_id,
                _not_deleted(MirrorParticipant.is_deleted),
            )
            .order_by(MirrorParticipant.created_date, MirrorParticipant.sfid)
        )

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        participants = []
        for row in rows:
            meeting_ids = tuple(
                meeting_id
                for meeting_id in (row.zoom_meeting_id_1, row.zoom_meeting_id_2)
                if meeting_id
            )
            participants.append(
                Participant(
                    id=row.sfid,
                    program_id=program_id,
                    contact_id=row.contact_id,
                    email=row.email or "",
                    first_name=row.first_name or "",
                    last_name=row.last_name or "",
                    role=map_role(row.record_type_name),
                    status=map_status(row.status, row.sfid),
                    section_key=row.cohort_name or None,
                    meeting_ids=meeting_ids,
                    chat_user_id=row.discord_user_id or None,
                )
            )
        return participants

    async def current_and_future_program_ids(self) -> list[str]:
        stmt = (
            select(MirrorProgram.sfid)
            .join(MirrorRecordType, MirrorRecordType.sfid == MirrorProgram.record_type_id)
            .where(
                and_(
                    MirrorRecordType.name == COURSE_PROGRAM_RECORD_TYPE,
                    MirrorProgram.status.in_(["Current", "Future"]),
                    _not_deleted(MirrorProgram.is_deleted),
                )
            )
            .order_by(MirrorProgram.sfid)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())
