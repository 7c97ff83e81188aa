"""Shared async Redis client (used for distributed locks)."""

import redis.asyncio as aioredis

from src.config import settings

_pool = aioredis.ConnectionPool.from_url(settings.redis_url, decode_responses=True)


async def get_redis() -> aioredis.Redis:
    return aioredis.Redis(connection_pool=_pool)


async def ping() -> bool:
    """Health probe; ``False`` instead of raising when Redis is unreachable."""
    try:
        return bool(await (await get_redis()).ping())
    except aioredis.RedisError:
        return False
