"""
Redis client configuration using redis-py (asyncio).

Holds state that must be shared across processes: poll attempt
counters and per-IP rate-limit windows.
"""

from typing import Optional
import logging

from redis import asyncio as aioredis
from redis.asyncio.client import Redis

from app.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client wrapper."""

    _client: Optional[Redis] = None

    @classmethod
    def get_client(cls) -> Redis:
        """Get or create Redis client."""
        if cls._client is None:
            if not settings.redis_url:
                raise RuntimeError("REDIS_URL not configured")

            cls._client = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                health_check_interval=30
            )
            logger.info("Redis client initialized")

        return cls._client

    @classmethod
    async def close(cls):
        """Close Redis client."""
        if cls._client:
            await cls._client.aclose()
            cls._client = None
            logger.info("Redis client closed")


async def get_redis() -> Redis:
    """Dependency for getting redis connection."""
    return RedisClient.get_client()


async def incr_with_ttl(redis: Redis, key: str, ttl_seconds: int) -> int:
    """
    Increment a counter and start its TTL on first use.
    Returns the counter value after the increment.
    """
    value = await redis.incr(key)
    if value == 1:
        await redis.expire(key, ttl_seconds)
    return int(value)


async def first_seen(redis: Redis, key: str, timestamp: float, ttl_seconds: int) -> float:
    """
    Remember when something was first seen.
    Returns the stored timestamp (this one on first call).
    """
    await redis.set(key, str(timestamp), nx=True, ex=ttl_seconds)
    stored = await redis.get(key)
    return float(stored) if stored is not None else timestamp
