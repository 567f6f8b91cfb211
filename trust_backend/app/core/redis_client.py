"""
Redis client initialization.

Only used for the distributed per-account lock backend.
"""

import redis.asyncio as redis
from trust_backend.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """Get Redis client instance."""
    return redis_client


async def ping_redis(client=None) -> bool:
    """
    Test Redis connection (the shared client unless one is passed in).

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await (client or redis_client).ping()
    except redis.RedisError:
        return False
