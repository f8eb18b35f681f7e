"""
Redis-based distributed lock.

Guards cluster-wide periodic jobs (currently the request-expiry cycle)
so that when several API processes run, only one of them times out
stale requests per interval.

Acquire is ``SET NX EX``; release is a Lua compare-and-delete so a
process never removes a lock that expired and was taken by another
process in the meantime.
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


class LockUnavailable(RuntimeError):
    """Raised by the context manager when another process holds the lock."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Delete the key if this instance still owns it.  Returns whether it did."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def held(self) -> bool:
        return await self.redis.get(self.key) == self.token

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockUnavailable(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
