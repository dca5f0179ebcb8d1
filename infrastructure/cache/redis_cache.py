"""Redis缓存实现（application.ports.cache.Cache 的基础设施适配）

缓存内容：聚合报价 `prices:*`、国家列表 `countries:*`、目录列表 `catalog:*`。
值以 JSON 保存，Decimal 序列化为字符串，读取方负责还原。
"""
from __future__ import annotations

import json
from typing import Any, Optional

from redis import asyncio as aioredis

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class RedisCache:
    """带命名空间的 JSON 缓存

    是否缓存空结果由调用方决定；这里只负责序列化与过期时间。
    """

    def __init__(self, client: aioredis.Redis, namespace: str = "", default_ttl: Optional[int] = None) -> None:
        self._client = client
        self._namespace = namespace.strip(":")
        self._default_ttl = settings.redis.default_ttl if default_ttl is None else default_ttl

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    async def get(self, key: str) -> Any:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # 损坏的条目按未命中处理，下一次写入会覆盖
            logger.warning("cache_value_corrupted", key=key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = json.dumps(value, default=str)
        expire = self._default_ttl if ttl is None else ttl
        if expire and expire > 0:
            await self._client.set(self._key(key), payload, ex=expire)
        else:
            await self._client.set(self._key(key), payload)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._key(key)))

    async def ping(self) -> bool:
        return bool(await self._client.ping())


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisCache] = None


async def init_redis_cache(namespace: Optional[str] = None) -> RedisCache:
    """初始化Redis缓存实例并确认连接可用

    Celery 任务每次运行都使用新的事件循环，结束时须调用 shutdown_redis_cache。
    """
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    if not settings.redis.url:
        raise RuntimeError("REDIS__URL 未配置，无法初始化Redis缓存")

    client = aioredis.from_url(
        settings.redis.url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis.max_connections,
    )
    cache = RedisCache(client=client, namespace=namespace or settings.redis.namespace)
    try:
        await cache.ping()
    except Exception:
        await client.aclose()
        raise

    _redis_client = client
    _cache_instance = cache
    logger.info("redis_cache_initialized", namespace=namespace or settings.redis.namespace)
    return cache


async def get_redis_cache() -> RedisCache:
    """获取全局Redis缓存实例"""
    if _cache_instance is None:
        return await init_redis_cache()
    return _cache_instance


async def shutdown_redis_cache() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None
    _cache_instance = None
