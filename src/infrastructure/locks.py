"""
Redis-based distributed lock.

Used by the lifecycle worker so that only one API process runs the sweep
per interval.  The sweeps are idempotent, so the lock only saves
duplicate work; correctness never depends on it.

Acquire is ``SET NX EX``; release and extend are Lua scripts that act
only while the stored token is still ours.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class LockNotAcquired(Exception):
    """Raised by ``async with`` when another holder owns the lock."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 60
    ):
        self.redis = client
        self.key = f"lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        """Try once, without waiting.  Returns True on success."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.held

    async def extend(self) -> bool:
        """Reset the TTL; False if the lock expired and someone else took it."""
        extended = bool(
            await self.redis.eval(_EXTEND_SCRIPT, 1, self.key, self.token, self.ttl)
        )
        self.held = extended
        return extended

    async def release(self) -> None:
        if not self.held:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        self.held = False

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
