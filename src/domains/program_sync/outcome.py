# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Sync run outcome and its state machine.

An outcome is created when a run starts, accumulates one result per
participant and is finalized exactly once:

    Pending -> Running -> Completed
                       -> CompletedWithFailures
                       -> AbortedFatal

There is no transition back and no transition out of a terminal state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from src.domains.program_sync.exceptions import FatalErrorKind, SyncFatalError
from src.domains.program_sync.models import Participant
from src.utils.datetime import format_iso, utc_now


class RunStatus(str, Enum):
    """Sync run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    ABORTED_FATAL = "aborted_fatal"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {RunStatus.COMPLETED, RunStatus.COMPLETED_WITH_FAILURES, RunStatus.ABORTED_FATAL}
)

_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: _TERMINAL,
    RunStatus.COMPLETED: frozenset(),
    RunStatus.COMPLETED_WITH_FAILURES: frozenset(),
    RunStatus.ABORTED_FATAL: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when an outcome is moved to a state it cannot reach."""

    def __init__(self, current: RunStatus, target: RunStatus) -> None:
        super().__init__(f"Cannot move sync run from {current.value} to {target.value}")
        self.current = current
        self.target = target


class ParticipantResultKind(str, Enum):
    """Classification of one participant within a run."""

    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ParticipantResult:
    """Result for one participant.

    Attributes:
        participant_id: External participant id.
        kind: Synced, skipped or failed.
        reason: Why the participant was skipped.
        changed_systems: Systems where a write was applied.
    """

    participant_id: str
    kind: ParticipantResultKind
    reason: Optional[str] = None
    changed_systems: tuple[str, ...] = ()


@dataclass(frozen=True)
class ParticipantFailure:
    """A participant that failed in at least one downstream system.

    Attributes:
        participant_id: External participant id.
        email: Participant email.
        first_name: Participant first name.
        last_name: Participant last name.
        errors: Error message per downstream system name.
    """

    participant_id: str
    email: str
    first_name: str
    last_name: str
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def error_detail(self) -> str:
        """All error messages as one line.

        A single error is reported as its message. Several are prefixed by
        their system and joined with "; ".
        """
        if len(self.errors) == 1:
            return next(iter(self.errors.values()))
        return "; ".join(f"{system}: {message}" for system, message in self.errors.items())


@dataclass
class SyncRunOutcome:
    """Outcome of one sync run for one program.

    Attributes:
        program_id: Program being synced.
        status: Current run status.
        total_count: Number of participants enumerated.
        results: One result per processed participant.
        failures: Failed participants with error detail.
        fatal_error_kind: Set when the run aborted.
        fatal_error_message: Set when the run aborted.
        started_at: When the run started.
        finished_at: When the run reached a terminal state.
    """

    program_id: str
    status: RunStatus = RunStatus.PENDING
    total_count: int = 0
    results: list[ParticipantResult] = field(default_factory=list)
    failures: list[ParticipantFailure] = field(default_factory=list)
    fatal_error_kind: Optional[FatalErrorKind] = None
    fatal_error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def aborted(
        cls,
        program_id: str,
        error: SyncFatalError,
        started_at: Optional[datetime] = None,
    ) -> "SyncRunOutcome":
        """Build the terminal outcome of a run that failed fatally."""
        outcome = cls(program_id=program_id)
        outcome.start(now=started_at)
        outcome.abort(error)
        return outcome

    def _transition(self, target: RunStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status, target)
        self.status = target

    def _ensure_running(self) -> None:
        if self.status is not RunStatus.RUNNING:
            raise InvalidTransitionError(self.status, RunStatus.RUNNING)

    def start(self, now: Optional[datetime] = None) -> None:
        """Move from Pending to Running."""
        self._transition(RunStatus.RUNNING)
        self.started_at = now or utc_now()

    def record_synced(self, participant: Participant, changed_systems: tuple[str, ...] = ()) -> None:
        self._ensure_running()
        self.results.append(
            ParticipantResult(
                participant_id=participant.id,
                kind=ParticipantResultKind.SYNCED,
                changed_systems=changed_systems,
            )
        )

    def record_skipped(self, participant: Participant, reason: str) -> None:
        self._ensure_running()
        self.results.append(
            ParticipantResult(
                participant_id=participant.id,
                kind=ParticipantResultKind.SKIPPED,
                reason=reason,
            )
        )

    def record_failed(self, participant: Participant, errors: dict[str, str]) -> None:
        self._ensure_running()
        self.results.append(
            ParticipantResult(participant_id=participant.id, kind=ParticipantResultKind.FAILED)
        )
        self.failures.append(
            ParticipantFailure(
                participant_id=participant.id,
                email=participant.email,
                first_name=participant.first_name,
                last_name=participant.last_name,
                errors=dict(errors),
            )
        )

    def finish(self, now: Optional[datetime] = None) -> None:
        """Finalize a run that processed its participants."""
        target = RunStatus.COMPLETED_WITH_FAILURES if self.failures else RunStatus.COMPLETED
        self._transition(target)
        self.finished_at = now or utc_now()

    def abort(self, error: SyncFatalError, now: Optional[datetime] = None) -> None:
        """Finalize a run that failed before touching participants."""
        self._transition(RunStatus.ABORTED_FATAL)
        self.fatal_error_kind = error.kind
        self.fatal_error_message = error.message
        self.finished_at = now or utc_now()

    def _count(self, kind: ParticipantResultKind) -> int:
        return sum(1 for result in self.results if result.kind is kind)

    @property
    def synced_count(self) -> int:
        return self._count(ParticipantResultKind.SYNCED)

    @property
    def skipped_count(self) -> int:
        return self._count(ParticipantResultKind.SKIPPED)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get run duration in seconds."""
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Summarize the outcome as a JSON-serializable dict."""
        return {
            "program_id": self.program_id,
            "status": self.status.value,
            "total_count": self.total_count,
            "synced_count": self.synced_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "failures": [
                {
                    "participant_id": failure.participant_id,
                    "email": failure.email,
                    "error_detail": failure.error_detail,
                }
                for failure in self.failures
            ],
            "fatal_error_kind": self.fatal_error_kind.value if self.fatal_error_kind else None,
            "fatal_error_message": self.fatal_error_message,
            "started_at": format_iso(self.started_at),
            "finished_at": format_iso(self.finished_at),
            "duration_seconds": self.duration_seconds,
        }
