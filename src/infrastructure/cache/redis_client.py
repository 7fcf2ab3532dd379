# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for sync locks and participant sync state.

This module provides an async Redis client wrapper exposing the handful of
primitives the sync engine relies on: plain key access, atomic
set-if-absent with a millisecond expiry, server-side Lua scripts for
compare-and-delete style operations, and hash access for per-program sync
state.

Example:
    from src.infrastructure.cache import RedisClient

    client = RedisClient(settings)
    await client.connect()
    created = await client.set_if_absent("sync:a0X5e000001", payload, 600_000)
    await client.close()
"""

import json
from typing import TYPE_CHECKING, Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError as BaseRedisError

if TYPE_CHECKING:
    from src.core.config.settings import Settings


class RedisError(Exception):
    """Exception raised for Redis operation failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying Redis error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the Redis error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class RedisClient:
    """Async Redis client used by the lock store and the sync state store.

    Values that are not strings are stored as JSON. Responses are decoded
    to str by the connection pool.

    Example:
        client = RedisClient(settings)
        await client.connect()
        await client.hset("sync:state:p1", "c1:course", "9f2c...")
        await client.close()
    """

    def __init__(self, settings: "Settings") -> None:
        """Initialize the Redis client.

        Args:
            settings: Application settings containing Redis configuration.
        """
        self._settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    async def connect(self) -> None:
        """Create the Redis connection pool.

        Raises:
            RedisError: If connection fails.
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._settings.redis.url,
                max_connections=self._settings.redis.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)
            await self._redis.ping()
        except BaseRedisError as e:
            raise RedisError("Failed to connect to Redis", e) from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    def _ensure_connected(self) -> Redis:
        """Return the connected client.

        Raises:
            RedisError: If not connected.
        """
        if self._redis is None:
            raise RedisError("Redis client not connected. Call connect() first.")
        return self._redis

    @staticmethod
    def _serialize(value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)

    # ========== Key operations ==========

    async def get(self, key: str) -> Optional[str]:
        """Get the raw string value of a key.

        Args:
            key: The key.

        Returns:
            The stored string or None if the key does not exist.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.get(key)
        except BaseRedisError as e:
            raise RedisError(f"Failed to get key: {key}", e) from e

    async def set_if_absent(self, key: str, value: Any, expire_ms: int) -> bool:
        """Atomically create a key with an expiry unless it already exists.

        This is a single SET NX PX command, so two callers racing for the
        same key can never both succeed.

        Args:
            key: The key.
            value: The value (JSON serialized if not a string).
            expire_ms: Expiry in milliseconds.

        Returns:
            True if the key was created, False if it already existed.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            result = await redis.set(key, self._serialize(value), nx=True, px=expire_ms)
            return bool(result)
        except BaseRedisError as e:
            raise RedisError(f"Failed to set key: {key}", e) from e

    async def delete(self, key: str) -> bool:
        """Delete a key.

        Args:
            key: The key to delete.

        Returns:
            True if the key was deleted, False if it didn't exist.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            result = await redis.delete(key)
            return result > 0
        except BaseRedisError as e:
            raise RedisError(f"Failed to delete key: {key}", e) from e

    async def run_script(self, script: str, keys: list[str], args: list[Any]) -> Any:
        """Evaluate a Lua script atomically on the server.

        Args:
            script: Lua source.
            keys: KEYS passed to the script.
            args: ARGV passed to the script.

        Returns:
            Whatever the script returns.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.eval(script, len(keys), *keys, *args)
        except BaseRedisError as e:
            raise RedisError(f"Failed to run script on keys: {keys}", e) from e

    # ========== Hash operations ==========

    async def hget(self, key: str, field: str) -> Optional[str]:
        """Get one field of a hash.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.hget(key, field)
        except BaseRedisError as e:
            raise RedisError(f"Failed to read hash field: {key}/{field}", e) from e

    async def hset(
        self,
        key: str,
        field: str,
        value: Any,
        expire_seconds: Optional[int] = None,
    ) -> None:
        """Set one field of a hash, optionally refreshing the hash expiry.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            await redis.hset(key, field, self._serialize(value))
            if expire_seconds is not None:
                await redis.expire(key, expire_seconds)
        except BaseRedisError as e:
            raise RedisError(f"Failed to write hash field: {key}/{field}", e) from e

    async def hdel(self, key: str, field: str) -> bool:
        """Delete one field of a hash.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.hdel(key, field) > 0
        except BaseRedisError as e:
            raise RedisError(f"Failed to delete hash field: {key}/{field}", e) from e
