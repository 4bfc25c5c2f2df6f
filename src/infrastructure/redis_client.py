"""Redis async connection pool shared by the webhook queue and worker lock."""

import redis.asyncio as aioredis

from src.config import settings

_pool = aioredis.ConnectionPool.from_url(settings.redis_url, decode_responses=True)


async def get_redis() -> aioredis.Redis:
    """Return a client on the shared pool; closing it leaves the pool alive."""
    return aioredis.Redis(connection_pool=_pool)


async def close_pool() -> None:
    await _pool.disconnect()
