# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Program synchronization domain.

Reconciles the participants of a program, as mirrored from the CRM, into
the course, meeting and chat systems.

Key Components:
- ProgramSyncService: The per-program engine
- ProgramSyncCoordinator: Lock, run, report and release
- SyncRunOutcome: Terminal result of one run
- CourseSystem, MeetingSystem, ChatSystem: Downstream systems
"""

from src.domains.program_sync.coordinator import (
    DispatchResult,
    ProgramSyncCoordinator,
    TriggerConfig,
)
from src.domains.program_sync.downstream import (
    DesiredMembership,
    DownstreamSystem,
    MembershipResult,
    ProgramContext,
)
from src.domains.program_sync.exceptions import (
    DuplicateParticipantError,
    FatalErrorKind,
    MissingLocalConfigurationError,
    ProgramNotFoundError,
    SyncFatalError,
)
from src.domains.program_sync.mirror import MirroredDataset, SqlMirroredDataset
from src.domains.program_sync.models import (
    EnrollmentStatus,
    LinkedCourse,
    Participant,
    ParticipantRole,
    Program,
    ProgramStatus,
    SyncOptions,
)
from src.domains.program_sync.outcome import (
    InvalidTransitionError,
    ParticipantFailure,
    ParticipantResult,
    ParticipantResultKind,
    RunStatus,
    SyncRunOutcome,
)
from src.domains.program_sync.service import ProgramSyncService, translate_error
from src.domains.program_sync.state import (
    InMemorySyncStateStore,
    RedisSyncStateStore,
    SyncStateStore,
)
from src.domains.program_sync.systems import ChatSystem, CourseSystem, MeetingSystem

__all__ = [
    # Engine
    "ProgramSyncService",
    "ProgramSyncCoordinator",
    "DispatchResult",
    "TriggerConfig",
    "translate_error",
    # Models
    "EnrollmentStatus",
    "LinkedCourse",
    "Participant",
    "ParticipantRole",
    "Program",
    "ProgramStatus",
    "SyncOptions",
    # Outcome
    "InvalidTransitionError",
    "ParticipantFailure",
    "ParticipantResult",
    "ParticipantResultKind",
    "RunStatus",
    "SyncRunOutcome",
    # Errors
    "DuplicateParticipantError",
    "FatalErrorKind",
    "MissingLocalConfigurationError",
    "ProgramNotFoundError",
    "SyncFatalError",
    # Data and downstream
    "MirroredDataset",
    "SqlMirroredDataset",
    "DesiredMembership",
    "DownstreamSystem",
    "MembershipResult",
    "ProgramContext",
    "ChatSystem",
    "CourseSystem",
    "MeetingSystem",
    # State
    "SyncStateStore",
    "RedisSyncStateStore",
    "InMemorySyncStateStore",
]
