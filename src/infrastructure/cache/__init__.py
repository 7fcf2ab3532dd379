# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cache infrastructure using Redis.

Redis backs the distributed sync locks, the participant sync state and the
Dramatiq broker. Each worker thread owns its own RedisClient because the
asyncio connection pool is bound to the thread's event loop.

Example:
    from src.infrastructure.cache import RedisClient

    client = RedisClient(settings)
    await client.connect()
"""

from src.infrastructure.cache.redis_client import RedisClient, RedisError

__all__ = [
    "RedisClient",
    "RedisError",
]
