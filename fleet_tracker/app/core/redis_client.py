"""
Redis client for the live change feed.

Location upserts and driver status changes are published over Redis pub/sub;
the dispatcher map subscribes to the same channels.
"""

import redis.asyncio as redis
from fleet_tracker.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    FastAPI dependency returning the shared publisher client.
    """
    return redis_client


async def ping_redis(client=None) -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    client = client or redis_client
    try:
        return bool(await client.ping())
    except Exception:
        return False


async def close_redis(client=None) -> None:
    """Release pooled connections on shutdown."""
    client = client or redis_client
    await client.aclose()
