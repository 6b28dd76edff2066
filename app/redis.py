"""
Redis client configuration using redis-py (asyncio).
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
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


@asynccontextmanager
async def redis_lock(
    redis: Redis,
    name: str,
    ttl_seconds: int,
) -> AsyncGenerator[bool, None]:
    """
    Best-effort mutual exclusion across workers.

    Yields True when this caller holds the lock, False when another
    holder already has it. The lock expires on its own after ttl_seconds.
    """
    key = f"lock:{name}"
    acquired = bool(await redis.set(key, "1", nx=True, ex=ttl_seconds))
    try:
        yield acquired
    finally:
        if acquired:
            await redis.delete(key)
