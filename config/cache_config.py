# coding: utf-8
"""
Cache configuration for Redis

Only provider metadata is cached (the token lists). Billing state,
quotes and payment status are never cached: they must always reflect the
provider and the database.
"""
import os


class CacheTTL:
    """Time-to-live settings in seconds"""

    SUPPORTED_TOKENS = int(os.getenv("CACHE_TTL_SUPPORTED_TOKENS", "600"))
    """Provider token list - 10 minutes (assets are added rarely)"""

    DEFAULT = int(os.getenv("CACHE_TTL_DEFAULT", "300"))
    """Default TTL - 5 minutes"""


class CacheConfig:
    """
    Redis connection and behavior configuration
    """

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    """Redis connection URL"""

    REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "10"))
    """Maximum connections in pool"""

    REDIS_SOCKET_TIMEOUT = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
    """Socket timeout in seconds"""

    CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"
    """Enable/disable caching (tests and local runs usually disable it)"""

    CACHE_NAMESPACE = os.getenv("CACHE_NAMESPACE", "license_api")
    """Namespace prefix for all cache keys"""


def cache_key(*parts: str) -> str:
    """
    Build a namespaced cache key

    Examples:
        >>> cache_key("tokens", "supported")
        'license_api:tokens:supported'
    """
    return ":".join((CacheConfig.CACHE_NAMESPACE, *parts))
