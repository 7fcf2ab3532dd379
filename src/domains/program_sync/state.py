# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Participant sync state.

For every (program, participant, system) the store keeps the fingerprint of
the last desired membership that was successfully applied. A participant
whose desired state still has that fingerprint is not observed again unless
a force flag is set. Losing the state is harmless: it only makes the next
run re-check everyone.

Redis layout: one hash per program, ``{prefix}:state:{program_id}``, with
fields ``{participant_id}:{system}``.
"""

import threading
from abc import ABC, abstractmethod
from typing import Optional

from src.infrastructure.cache.redis_client import RedisClient


class SyncStateStore(ABC):
    """Storage of applied-state fingerprints."""

    @abstractmethod
    async def get_fingerprint(
        self, program_id: str, participant_id: str, system: str
    ) -> Optional[str]:
        """Return the last applied fingerprint, if any."""

    @abstractmethod
    async def set_fingerprint(
        self, program_id: str, participant_id: str, system: str, fingerprint: str
    ) -> None:
        """Remember a fingerprint as applied."""

    @abstractmethod
    async def clear(self, program_id: str, participant_id: str, system: str) -> None:
        """Forget the fingerprint so the next run re-checks."""


class RedisSyncStateStore(SyncStateStore):
    """Fingerprints kept in one Redis hash per program.

    Args:
        client: Connected Redis client.
        prefix: Key prefix, shared with the sync locks.
        ttl_seconds: Expiry of a program's hash, refreshed on every write.
    """

    def __init__(self, client: RedisClient, prefix: str = "sync", ttl_seconds: int = 30 * 86400) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl_seconds = ttl_seconds

    def _key(self, program_id: str) -> str:
        return f"{self._prefix}:state:{program_id}"

    @staticmethod
    def _field(participant_id: str, system: str) -> str:
        return f"{participant_id}:{system}"

    async def get_fingerprint(
        self, program_id: str, participant_id: str, system: str
    ) -> Optional[str]:
        return await self._client.hget(self._key(program_id), self._field(participant_id, system))

    async def set_fingerprint(
        self, program_id: str, participant_id: str, system: str, fingerprint: str
    ) -> None:
        await self._client.hset(
            self._key(program_id),
            self._field(participant_id, system),
            fingerprint,
            expire_seconds=self._ttl_seconds,
        )

    async def clear(self, program_id: str, participant_id: str, system: str) -> None:
        await self._client.hdel(self._key(program_id), self._field(participant_id, system))


class InMemorySyncStateStore(SyncStateStore):
    """Process-local fingerprints for tests and stub mode."""

    def __init__(self) -> None:
        self._fingerprints: dict[tuple[str, str, str], str] = {}
        self._mutex = threading.Lock()

    async def get_fingerprint(
        self, program_id: str, participant_id: str, system: str
    ) -> Optional[str]:
        with self._mutex:
            return self._fingerprints.get((program_id, participant_id, system))

    async def set_fingerprint(
        self, program_id: str, participant_id: str, system: str, fingerprint: str
    ) -> None:
        with self._mutex:
            self._fingerprints[(program_id, participant_id, system)] = fingerprint

    async def clear(self, program_id: str, participant_id: str, system: str) -> None:
        with self._mutex:
            self._fingerprints.pop((program_id, participant_id, system), None)

    def clear_all(self) -> None:
        """Forget every fingerprint."""
        with self._mutex:
            self._fingerprints.clear()
