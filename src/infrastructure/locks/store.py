# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Lock storage backends.

A lock store is a key-value store with one atomic conditional write. It is
the only concurrency primitive the sync engine relies on: whatever the
number of worker processes, at most one unexpired record exists per key.

Each stored value is the JSON document ``{"holder_token", "expires_at"}``.

Backends:
    - RedisLockStore: SET NX PX for creation, Lua scripts for the
      token-checked delete and extend. Used by every deployed worker.
    - InMemoryLockStore: thread-safe dict for tests and stub mode. Only
      coordinates threads of a single process.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from src.infrastructure.cache.redis_client import RedisClient
from src.utils.datetime import format_iso, parse_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockRecord:
    """Value stored under a lock key.

    Attributes:
        holder_token: Unique token identifying the current holder.
        expires_at: Instant after which the lock no longer counts.
    """

    holder_token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check whether the record has lapsed at the given instant."""
        return now >= self.expires_at

    def to_json(self) -> str:
        """Serialize to the stored JSON document."""
        return json.dumps(
            {"holder_token": self.holder_token, "expires_at": format_iso(self.expires_at)}
        )

    @classmethod
    def from_json(cls, raw: str) -> "LockRecord":
        """Parse the stored JSON document.

        Raises:
            ValueError: If the document is malformed.
        """
        try:
            data = json.loads(raw)
            expires_at = parse_iso(data["expires_at"])
            holder_token = data["holder_token"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Malformed lock record: {raw!r}") from e
        if expires_at is None:
            raise ValueError(f"Lock record without expiry: {raw!r}")
        return cls(holder_token=holder_token, expires_at=expires_at)


class LockStore(ABC):
    """Storage contract for TTL-bounded locks."""

    @abstractmethod
    async def create(self, key: str, record: LockRecord, ttl_ms: int) -> bool:
        """Create the record if no live record exists under the key.

        Returns:
            True if the record was written, False if a live one exists.
        """

    @abstractmethod
    async def delete_if_holder(self, key: str, holder_token: str) -> bool:
        """Delete the record only if it belongs to the given holder.

        Returns:
            True if a record was deleted.
        """

    @abstractmethod
    async def extend_if_holder(self, key: str, record: LockRecord, ttl_ms: int) -> bool:
        """Replace the record and its expiry if the holder still owns it.

        Returns:
            True if the record was extended.
        """

    @abstractmethod
    async def get(self, key: str) -> Optional[LockRecord]:
        """Return the live record under the key, if any."""


class RedisLockStore(LockStore):
    """Lock store backed by Redis.

    Expiry is enforced by Redis itself through the key TTL, so an expired
    lock is simply an absent key and SET NX succeeds on it.
    """

    RELEASE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
if cjson.decode(current)['holder_token'] == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

    EXTEND_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
if cjson.decode(current)['holder_token'] == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'PX', ARGV[3])
    return 1
end
return 0
"""

    def __init__(self, client: RedisClient) -> None:
        self._client = client

    async def create(self, key: str, record: LockRecord, ttl_ms: int) -> bool:
        return await self._client.set_if_absent(key, record.to_json(), ttl_ms)

    async def delete_if_holder(self, key: str, holder_token: str) -> bool:
        result = await self._client.run_script(
            self.RELEASE_SCRIPT, [key], [holder_token]
        )
        return bool(result)

    async def extend_if_holder(self, key: str, record: LockRecord, ttl_ms: int) -> bool:
        result = await self._client.run_script(
            self.EXTEND_SCRIPT, [key], [record.holder_token, record.to_json(), ttl_ms]
        )
        return bool(result)

    async def get(self, key: str) -> Optional[LockRecord]:
        raw = await self._client.get(key)
        if raw is None:
            return None
        try:
            return LockRecord.from_json(raw)
        except ValueError:
            logger.warning("Ignoring unreadable lock value under %s", key)
            return None


class InMemoryLockStore(LockStore):
    """Process-local lock store.

    A threading lock guards the dict so that Dramatiq worker threads, each
    running its own event loop, see a consistent view.

    Args:
        clock: Returns the current UTC time. Tests pass a controllable clock
            to simulate TTL expiry.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._records: dict[str, LockRecord] = {}
        self._mutex = threading.Lock()

    def _live(self, key: str) -> Optional[LockRecord]:
        record = self._records.get(key)
        if record is not None and record.is_expired(self._clock()):
            del self._records[key]
            return None
        return record

    async def create(self, key: str, record: LockRecord, ttl_ms: int) -> bool:
        with self._mutex:
            if self._live(key) is not None:
                return False
            self._records[key] = record
            return True

    async def delete_if_holder(self, key: str, holder_token: str) -> bool:
        with self._mutex:
            current = self._live(key)
            if current is None or current.holder_token != holder_token:
                return False
            del self._records[key]
            return True

    async def extend_if_holder(self, key: str, record: LockRecord, ttl_ms: int) -> bool:
        with self._mutex:
            current = self._live(key)
            if current is None or current.holder_token != record.holder_token:
                return False
            self._records[key] = record
            return True

    async def get(self, key: str) -> Optional[LockRecord]:
        with self._mutex:
            return self._live(key)

    def clear(self) -> None:
        """Drop every record."""
        with self._mutex:
            self._records.clear()
