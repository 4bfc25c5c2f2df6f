"""
Redis-based distributed lock.

Held by the reconciliation worker so that only one process drains the
webhook queue at a time, which keeps payment updates for a single intent
in delivery order.

Acquire is ``SET NX EX``; release is an atomic check-and-delete in Lua so
a lock that expired and was taken over is never released by its old owner.
"""

from __future__ import annotations

import asyncio
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
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 30,
        *,
        wait_seconds: float = 0,
        retry_interval: float = 0.1,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait_seconds = wait_seconds
        self.retry_interval = retry_interval
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to take the lock, polling for up to ``wait_seconds``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        while True:
            if await self.redis.set(self.key, self.token, nx=True, ex=self.ttl):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.retry_interval)

    async def release(self) -> None:
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args) -> None:
        await self.release()
