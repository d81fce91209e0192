"""
Redis client initialization.

Redis holds operational state only (the last rollover report); balances are
never cached here.
"""

import redis.asyncio as redis
from backend.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    Used as a FastAPI dependency so tests can swap in a mock.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except (redis.RedisError, OSError):
        return False
