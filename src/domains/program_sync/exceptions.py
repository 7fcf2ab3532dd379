# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Program sync exceptions.

Fatal errors abort a run before any participant is touched. Everything
else raised while reconciling one participant is caught and recorded as a
participant failure.

Exception Hierarchy:
    SyncFatalError (base)
    ├── ProgramNotFoundError
    └── MissingLocalConfigurationError
    DuplicateParticipantError (participant-level)
"""

from enum import Enum


class FatalErrorKind(str, Enum):
    """Kind of fatal error that aborted a run."""

    PROGRAM_NOT_FOUND = "program_not_found"
    MISSING_LOCAL_CONFIGURATION = "missing_local_configuration"
    OTHER = "other"


class SyncFatalError(Exception):
    """Base exception for errors that abort a whole sync run.

    Attributes:
        message: Human-readable error message.
        program_id: Program the run was for.
        kind: Fatal error classification.
    """

    kind: FatalErrorKind = FatalErrorKind.OTHER

    def __init__(self, message: str, program_id: str) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            program_id: Program the run was for.
        """
        super().__init__(message)
        self.message = message
        self.program_id = program_id


class ProgramNotFoundError(SyncFatalError):
    """Raised when the program is absent from the mirrored dataset."""

    kind = FatalErrorKind.PROGRAM_NOT_FOUND

    def __init__(self, program_id: str) -> None:
        super().__init__(f"Program not found: {program_id}", program_id)


class MissingLocalConfigurationError(SyncFatalError):
    """Raised when the program has no linked local course.

    This is expected for programs still being set up, so callers suppress
    alerting for it outside production.
    """

    kind = FatalErrorKind.MISSING_LOCAL_CONFIGURATION

    def __init__(self, program_id: str, detail: str) -> None:
        super().__init__(
            f"Missing local course configuration for program {program_id}: {detail}",
            program_id,
        )


class DuplicateParticipantError(Exception):
    """Raised for a second participant of the same contact in one program.

    Attributes:
        participant_id: The duplicate participant.
        original_participant_id: The participant already processed.
        contact_id: Shared contact.
    """

    def __init__(
        self,
        participant_id: str,
        original_participant_id: str,
        contact_id: str,
        program_id: str,
    ) -> None:
        message = (
            f"Duplicate participants for contact {contact_id} in program {program_id}. "
            f"Merge participant {participant_id} into {original_participant_id}."
        )
        super().__init__(message)
        self.participant_id = participant_id
        self.original_participant_id = original_participant_id
        self.contact_id = contact_id
