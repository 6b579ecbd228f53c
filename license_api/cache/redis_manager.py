# coding: utf-8
"""
Redis Manager for provider metadata cache

Async Redis client with connection pooling and graceful degradation:
when Redis is disabled or unreachable every call becomes a cache miss and
the caller goes to the provider directly.
"""
import json
from typing import Any, Optional

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from loguru import logger

from config.cache_config import CacheConfig, CacheTTL


class RedisManager:
    """
    Redis cache manager

    Usage:
        >>> redis_mgr = RedisManager()
        >>> await redis_mgr.initialize()
        >>> await redis_mgr.set("license_api:tokens:supported", tokens, ttl=600)
        >>> tokens = await redis_mgr.get("license_api:tokens:supported")
        >>> await redis_mgr.close()
    """

    def __init__(self, url: Optional[str] = None):
        self._url = url or CacheConfig.REDIS_URL
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_available = False
        self._stats = {"hits": 0, "misses": 0, "errors": 0, "sets": 0}

    async def initialize(self) -> bool:
        """
        Connect and ping Redis

        Returns:
            True if Redis is available, False otherwise
        """
        if not CacheConfig.CACHE_ENABLED:
            logger.info("Redis caching is disabled in configuration")
            return False

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=CacheConfig.REDIS_MAX_CONNECTIONS,
                decode_responses=True,
                socket_connect_timeout=CacheConfig.REDIS_SOCKET_TIMEOUT,
                socket_timeout=CacheConfig.REDIS_SOCKET_TIMEOUT,
            )
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()

            self._is_available = True
            logger.info(f"Redis initialized (max_connections={CacheConfig.REDIS_MAX_CONNECTIONS})")
            return True

        except RedisConnectionError as e:
            logger.warning(f"Redis connection failed: {e}. API will work without cache.")
            self._is_available = False
            return False

        except RedisError as e:
            logger.error(f"Unexpected Redis error during initialization: {e}")
            self._is_available = False
            return False

    async def close(self):
        """Close Redis connections"""
        if self._client:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")

        if self._pool:
            await self._pool.aclose()

        self._client = None
        self._pool = None
        self._is_available = False

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get a JSON value from cache

        Returns:
            Cached value or default on miss, when unavailable, or on error
        """
        if not self._is_available:
            return default

        try:
            value = await self._client.get(key)
        except RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Redis GET error for key '{key}': {e}")
            return default

        if value is None:
            self._stats["misses"] += 1
            logger.debug(f"Cache MISS: {key}")
            return default

        self._stats["hits"] += 1
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store a JSON-serializable value with TTL

        Returns:
            True if stored, False otherwise
        """
        if not self._is_available:
            return False

        try:
            await self._client.setex(key, ttl or CacheTTL.DEFAULT, json.dumps(value, ensure_ascii=False))
            self._stats["sets"] += 1
            logger.debug(f"Cache SET: {key} (TTL={ttl or CacheTTL.DEFAULT}s)")
            return True

        except (RedisError, TypeError) as e:
            self._stats["errors"] += 1
            logger.warning(f"Redis SET error for key '{key}': {e}")
            return False

    def get_stats(self) -> dict:
        """Cache hit/miss counters for the health endpoint"""
        return {**self._stats, "is_available": self._is_available}

    def is_available(self) -> bool:
        """Check if Redis is available"""
        return self._is_available


# Global Redis manager instance
_redis_manager: Optional[RedisManager] = None


def get_redis_manager() -> RedisManager:
    """
    Get global Redis manager instance (singleton)
    """
    global _redis_manager
    if _redis_manager is None:
        _redis_manager = RedisManager()
    return _redis_manager
