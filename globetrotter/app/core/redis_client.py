"""
Shared Redis client.

Redis only backs the token revocation list. The client is created once
per process; tests swap the module-level `redis_client` for an in-memory
fake.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from globetrotter.app.core.config import settings

logger = logging.getLogger("globetrotter.redis")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
    socket_timeout=settings.redis_socket_timeout,
)


async def get_redis():
    return redis_client


async def ping_redis() -> bool:
    """True if Redis answers; used by the health check."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    """Close the client's connection pool (application shutdown)."""
    await redis_client.aclose()
