# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Contract between the sync engine and a downstream system.

A downstream system (course, meeting, chat) computes the membership a
participant should have, observes what exists, and writes only the
difference. Every write is an idempotent upsert keyed by the participant's
contact, so replaying a run or syncing the same person from two programs
never creates duplicates.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from src.domains.program_sync.models import LinkedCourse, Participant, Program


@dataclass(frozen=True)
class ProgramContext:
    """What a downstream system needs to know about the program being synced."""

    program: Program
    course: LinkedCourse


@dataclass(frozen=True)
class DesiredMembership:
    """Membership a participant should have in one downstream system.

    Attributes:
        role: Downstream role, or None when the participant must be absent.
        scopes: Where the membership applies (section, meetings, server).
        attributes: Extra identity data the system writes (names, email).
    """

    role: Optional[str]
    scopes: tuple[str, ...] = ()
    attributes: tuple[tuple[str, str], ...] = ()

    @property
    def present(self) -> bool:
        return self.role is not None

    def fingerprint(self) -> str:
        """Stable hash of the desired state.

        Equal fingerprints mean a previous successful reconciliation already
        applied exactly this state.
        """
        payload = json.dumps(
            {"role": self.role, "scopes": list(self.scopes), "attributes": list(self.attributes)},
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class MembershipResult(str, Enum):
    """What ensure_membership did."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    # Nothing could be done yet, e.g. the user has not joined the chat server.
    # The state is not remembered so the next run checks again.
    DEFERRED = "deferred"


class DownstreamSystem(ABC):
    """A system whose memberships mirror the CRM.

    Subclasses set ``name`` and implement desired_membership, observe and
    apply. Per-run caches are reset in begin_run.
    """

    name: str = "downstream"

    def begin_run(self, context: ProgramContext) -> None:
        """Reset per-run caches before a program run starts."""

    @abstractmethod
    def desired_membership(
        self,
        context: ProgramContext,
        participant: Participant,
    ) -> Optional[DesiredMembership]:
        """Compute the desired membership.

        Returns:
            The desired membership, or None if this system does not manage
            the participant at all.
        """

    @abstractmethod
    async def observe(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
    ) -> Any:
        """Fetch the participant's current downstream state."""

    @abstractmethod
    async def apply(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
        observed: Any,
    ) -> MembershipResult:
        """Write the difference between observed and desired state."""

    async def ensure_membership(
        self,
        context: ProgramContext,
        participant: Participant,
        desired: DesiredMembership,
    ) -> MembershipResult:
        """Observe, then apply only what differs."""
        observed = await self.observe(context, participant, desired)
        return await self.apply(context, participant, desired, observed)
