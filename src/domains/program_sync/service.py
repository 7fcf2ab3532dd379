# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Program synchronization engine.

For one program, the engine enumerates participants from the mirrored CRM
dataset and reconciles each of them against every downstream system
independently. A participant failing in one system is recorded and does
not stop the other systems or the other participants. Only an unresolvable
program or a missing course linkage aborts the run, and it does so before
any participant is touched.

Example:
    >>> service = ProgramSyncService(dataset, [course, meeting, chat], state)
    >>> outcome = await service.run("a0X5e000001", SyncOptions())
    >>> outcome.status
    <RunStatus.COMPLETED: 'completed'>
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from src.domains.program_sync.downstream import (
    DesiredMembership,
    DownstreamSystem,
    MembershipResult,
    ProgramContext,
)
from src.domains.program_sync.exceptions import (
    DuplicateParticipantError,
    MissingLocalConfigurationError,
    ProgramNotFoundError,
    SyncFatalError,
)
from src.domains.program_sync.mirror import MirroredDataset
from src.domains.program_sync.models import EnrollmentStatus, Participant, SyncOptions
from src.domains.program_sync.outcome import SyncRunOutcome
from src.domains.program_sync.state import SyncStateStore
from src.infrastructure.database.connection import DatabaseError
from src.services.exceptions import DownstreamError, DownstreamTimeoutError
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

DUPLICATE_ERROR_KEY = "participant"


def translate_error(error: Exception, participant: Participant) -> str:
    """Turn an exception into the detail text shown to operators.

    Errors raised by our own clients already carry operator-facing
    messages. Anything else is reported with its class name.
    """
    if isinstance(error, DownstreamTimeoutError):
        return (
            f"{error.message}. Until it works this participant may have trouble "
            f"accessing {error.system}: {participant.email}"
        )
    if isinstance(error, (DownstreamError, DuplicateParticipantError)):
        return str(error)
    return f"{type(error).__name__}: {error}"


class ProgramSyncService:
    """Synchronizes one program's participants into the downstream systems.

    Args:
        dataset: Mirrored CRM data.
        systems: Downstream systems, reconciled in this order.
        state_store: Fingerprints of previously applied states.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        dataset: MirroredDataset,
        systems: Sequence[DownstreamSystem],
        state_store: SyncStateStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._dataset = dataset
        self._systems = list(systems)
        self._state = state_store
        self._clock = clock

    @property
    def dataset(self) -> MirroredDataset:
        return self._dataset

    async def run(
        self,
        program_id: str,
        options: Optional[SyncOptions] = None,
    ) -> SyncRunOutcome:
        """Synchronize every participant of a program.

        Args:
            program_id: External program id.
            options: Force flags.

        Returns:
            The finalized outcome, completed or completed with failures.

        Raises:
            ProgramNotFoundError: The program is not in the mirrored dataset.
            MissingLocalConfigurationError: The program has no linked course.
            SyncFatalError: The mirrored dataset could not be read.
        """
        options = options or SyncOptions()
        outcome = SyncRunOutcome(program_id=program_id)
        outcome.start(now=self._clock())

        context, participants = await self._load(program_id)
        outcome.total_count = len(participants)
        logger.info(
            "Syncing %d participants of program %s (%s)",
            len(participants),
            program_id,
            context.program.name,
        )

        for system in self._systems:
            system.begin_run(context)

        seen_contacts: dict[str, str] = {}
        for participant in participants:
            await self._sync_participant(context, participant, options, outcome, seen_contacts)

        outcome.finish(now=self._clock())
        logger.info(
            "Finished sync of program %s: %s (%d synced, %d skipped, %d failed)",
            program_id,
            outcome.status.value,
            outcome.synced_count,
            outcome.skipped_count,
            outcome.failed_count,
        )
        return outcome

    async def _load(self, program_id: str) -> tuple[ProgramContext, list[Participant]]:
        """Resolve the program, its linked course and its participants."""
        try:
            program = await self._dataset.get_program(program_id)
            if program is None:
                raise ProgramNotFoundError(program_id)

            if not program.course_id:
                raise MissingLocalConfigurationError(program_id, "the program has no course id")

            course = await self._dataset.get_linked_course(program)
            if course is None:
                raise MissingLocalConfigurationError(
                    program_id, f"no local course for LMS course {program.course_id}"
                )

            participants = await self._dataset.list_participants(program_id)
        except DatabaseError as e:
            raise SyncFatalError(f"Mirrored dataset unavailable: {e}", program_id) from e

        return ProgramContext(program=program, course=course), participants

    @staticmethod
    def _skip_reason(participant: Participant) -> Optional[str]:
        if participant.known_role is None:
            return f"role '{participant.role}' has no downstream mapping"
        if participant.status is not EnrollmentStatus.WITHDRAWN and not participant.section_key:
            return "participant has no cohort assigned"
        return None

    async def _sync_participant(
        self,
        context: ProgramContext,
        participant: Participant,
        options: SyncOptions,
        outcome: SyncRunOutcome,
        seen_contacts: dict[str, str],
    ) -> None:
        skip_reason = self._skip_reason(participant)
        if skip_reason:
            logger.debug("Skipping participant %s: %s", participant.id, skip_reason)
            outcome.record_skipped(participant, skip_reason)
            return

        original_id = seen_contacts.get(participant.contact_id)
        if original_id is not None:
            error = DuplicateParticipantError(
                participant.id, original_id, participant.contact_id, context.program.id
            )
            logger.warning("%s", error)
            outcome.record_failed(participant, {DUPLICATE_ERROR_KEY: translate_error(error, participant)})
            return
        seen_contacts[participant.contact_id] = participant.id

        plans = [
            (system, system.desired_membership(context, participant)) for system in self._systems
        ]
        plans = [(system, desired) for system, desired in plans if desired is not None]
        if not plans:
            outcome.record_skipped(participant, "no downstream system manages this participant")
            return

        errors: dict[str, str] = {}
        changed: list[str] = []
        for system, desired in plans:
            try:
                result = await self._reconcile(context, participant, system, desired, options)
            except Exception as e:
                logger.warning(
                    "Failed to sync participant %s in %s: %s",
                    participant.id,
                    system.name,
                    e,
                    exc_info=not isinstance(e, DownstreamError),
                )
                errors[system.name] = translate_error(e, participant)
                continue
            if result is MembershipResult.APPLIED:
                changed.append(system.name)

        if errors:
            outcome.record_failed(participant, errors)
        else:
            outcome.record_synced(participant, tuple(changed))

    async def _reconcile(
        self,
        context: ProgramContext,
        participant: Participant,
        system: DownstreamSystem,
        desired: DesiredMembership,
        options: SyncOptions,
    ) -> MembershipResult:
        """Reconcile one participant in one system.

        Observation is skipped when the desired state was already applied,
        unless the system is forced.
        """
        program_id = context.program.id
        fingerprint = desired.fingerprint()

        if not options.forces(system.name):
            applied = await self._state.get_fingerprint(program_id, participant.id, system.name)
            if applied == fingerprint:
                return MembershipResult.UNCHANGED

        result = await system.ensure_membership(context, participant, desired)

        if result is MembershipResult.DEFERRED:
            await self._state.clear(program_id, participant.id, system.name)
        else:
            await self._state.set_fingerprint(program_id, participant.id, system.name, fingerprint)
        return result
