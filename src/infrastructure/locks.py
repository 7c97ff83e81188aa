"""
Redis-based distributed lock.

Keeps background sweeps single-instance across API processes: a second
process that fails to acquire simply skips its cycle.

Acquire is ``SET key token NX EX ttl``; release runs a Lua script that
deletes the key only while it still holds our token, so a lock that
expired and was taken over is never released by the old owner.
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


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Try once; ``True`` when this instance now owns the lock."""
        return bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))

    async def release(self) -> bool:
        """Release if still owned.  Returns whether a key was deleted."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
