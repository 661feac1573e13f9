"""
Redis caching layer for event reads.

The cache is optional: when ``cache_enabled`` is off, or Redis cannot be
reached at startup, every operation is a no-op and callers fall through to
the database.
"""

import json
import logging
import time
from typing import Any, Optional, Tuple
from uuid import uuid4

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


class CacheKeyBuilder:
    """Helper class for building consistent cache keys."""

    @staticmethod
    def event_detail(event_id: str) -> str:
        """Build cache key for event details."""
        return f"event:detail:{event_id}"

    @staticmethod
    def event_list(filters_hash: str, page: int, size: int) -> str:
        """Build cache key for event listings."""
        return f"events:list:{filters_hash}:{page}:{size}"


class CacheTTL:
    """Cache TTLs in seconds, read from settings."""

    def __init__(self, settings: Settings):
        self.event_detail = settings.cache_event_detail_ttl
        self.event_list = settings.cache_event_list_ttl


class RedisCache:
    """Redis cache manager with connection handling and operations."""

    def __init__(self):
        self.client: Optional[Redis] = None
        self.pool: Optional[redis.ConnectionPool] = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def initialize(self, settings: Optional[Settings] = None) -> None:
        """Connect to Redis if caching is enabled."""
        settings = settings or get_settings()

        if not settings.cache_enabled:
            logger.info("Event cache disabled")
            return

        self.pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            retry_on_timeout=True,
            health_check_interval=30
        )
        client = Redis(connection_pool=self.pool)

        try:
            await client.ping()
        except RedisError as e:
            logger.warning("Redis unavailable, running without cache: %s", e)
            await self.pool.disconnect()
            self.pool = None
            return

        self.client = client
        logger.info("Redis cache initialized successfully")

    async def close(self) -> None:
        """Close Redis connections."""
        if self.client:
            await self.client.aclose()
            self.client = None
        if self.pool:
            await self.pool.disconnect()
            self.pool = None
            logger.info("Redis cache connections closed")

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found or the cache is off
        """
        if not self.client:
            return None

        try:
            value = await self.client.get(key)
            if value:
                return json.loads(value)
            return None
        except (RedisError, ValueError) as e:
            logger.warning("Failed to get cache key %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serialisable value, optionally with a TTL."""
        if not self.client:
            return False

        try:
            serialized_value = json.dumps(value, default=str)
            if ttl:
                await self.client.setex(key, ttl, serialized_value)
            else:
                await self.client.set(key, serialized_value)
            return True
        except (RedisError, TypeError) as e:
            logger.warning("Failed to set cache key %s: %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        if not self.client:
            return False

        try:
            await self.client.delete(key)
            return True
        except RedisError as e:
            logger.warning("Failed to delete cache key %s: %s", key, e)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Pattern to match (e.g., "events:list:*")

        Returns:
            Number of keys deleted
        """
        if not self.client:
            return 0

        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if keys:
                await self.client.delete(*keys)
            return len(keys)
        except RedisError as e:
            logger.warning("Failed to delete keys with pattern %s: %s", pattern, e)
            return 0


    async def hit_window(self, key: str, window: int) -> Optional[Tuple[int, float]]:
        """
        Record a request in a sliding window kept as a sorted set.

        Returns:
            Requests already in the window and the timestamp of the oldest
            one, or None when the cache is off or Redis fails
        """
        if not self.client:
            return None

        now = time.time()
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now - window)
                pipe.zcard(key)
                pipe.zadd(key, {f"{now}:{uuid4().hex}": now})
                pipe.zrange(key, 0, 0, withscores=True)
                pipe.expire(key, window * 2)
                _, count, _, oldest, _ = await pipe.execute()
        except RedisError as e:
            logger.warning("Failed to record rate limit hit for %s: %s", key, e)
            return None

        return count, oldest[0][1] if oldest else now


# Global cache instance
cache = RedisCache()


async def init_cache() -> None:
    """Initialize the global cache instance."""
    await cache.initialize()


async def close_cache() -> None:
    """Close the global cache instance."""
    await cache.close()


def get_cache() -> RedisCache:
    """Get the global cache instance."""
    return cache


class CacheInvalidator:
    """Helper class for cache invalidation strategies."""

    @staticmethod
    async def invalidate_event_caches(event_id: str) -> None:
        """Drop the detail entry of one event and every cached listing."""
        if not cache.enabled:
            return

        await cache.delete(CacheKeyBuilder.event_detail(event_id))
        await cache.delete_pattern("events:list:*")
        logger.debug(f"Invalidated caches for event {event_id}")

    @staticmethod
    async def invalidate_event_list_caches() -> None:
        if not cache.enabled:
            return

        await cache.delete_pattern("events:list:*")
