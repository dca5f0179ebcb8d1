"""Redis-backed implementation of the cache port."""
from .redis_cache import RedisCache, get_redis_cache, shutdown_redis_cache

__all__ = ["RedisCache", "get_redis_cache", "shutdown_redis_cache"]
