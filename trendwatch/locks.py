"""Cycle locks for the alert-check pass.

A rule must not be evaluated by two overlapping cycles. ``try_acquire``
never waits: a cycle that finds the lock held is skipped, and the next
scheduled cycle picks the rules up.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
import structlog

log = structlog.get_logger(__name__)

# Deletes the key only if this holder still owns it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class CycleLock(ABC):
    @abstractmethod
    async def try_acquire(self) -> bool:
        pass

    @abstractmethod
    async def release(self) -> None:
        pass

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """Yield whether the lock was obtained; release it on exit if it was."""
        acquired = await self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                await self.release()


class LocalCycleLock(CycleLock):
    """Mutual exclusion between cycles running in one process."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    async def try_acquire(self) -> bool:
        if self._lock.locked():
            return False
        await self._lock.acquire()
        return True

    async def release(self) -> None:
        self._lock.release()


class RedisCycleLock(CycleLock):
    """Mutual exclusion across worker processes via ``SET NX PX``.

    The TTL bounds how long a crashed holder can block later cycles.
    """

    def __init__(self, redis: aioredis.Redis, key: str, ttl_seconds: int) -> None:
        self.redis = redis
        self.key = key
        self.ttl_ms = ttl_seconds * 1000
        self._token = uuid.uuid4().hex

    async def try_acquire(self) -> bool:
        acquired = await self.redis.set(self.key, self._token, nx=True, px=self.ttl_ms)
        if not acquired:
            log.info("cycle_lock_busy", key=self.key)
        return bool(acquired)

    async def release(self) -> None:
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
