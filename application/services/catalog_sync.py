"""
Catalog synchronisation: pull a provider's full listing in chunks, price it
and upsert it into the local catalog.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from application.dtos.providers import CatalogListing
from application.ports.cache import Cache
from application.services.pricing_service import PricingService
from application.services.provider_registry import ProviderRegistry
from application.services.reconciler import BulkFetchResult, FetchProgress, fetch_all_pages
from core.logging_config import get_logger


logger = get_logger(__name__)


class CatalogSyncService:
    def __init__(
        self,
        uow_factory: Callable[..., Any],
        registry: ProviderRegistry,
        pricing: PricingService,
        *,
        cache: Optional[Cache] = None,
        cache_ttl: int = 3600,
        page_size: int = 50,
        max_chunk_retries: int = 2,
        retry_delay: float = 2.0,
        chunk_delay: float = 0.5,
    ) -> None:
        self._uow_factory = uow_factory
        self._registry = registry
        self._pricing = pricing
        self._cache = cache
        self._cache_ttl = cache_ttl
        self._page_size = page_size
        self._max_chunk_retries = max_chunk_retries
        self._retry_delay = retry_delay
        self._chunk_delay = chunk_delay

    async def _listings(
        self,
        provider_id: str,
        on_progress: Optional[Callable[[FetchProgress], Optional[bool]]],
    ) -> BulkFetchResult:
        cache_key = f"catalog:{provider_id}"
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached:
                items = [CatalogListing.model_validate(i) for i in cached]
                return BulkFetchResult(items=items, total=len(items))

        adapter = self._registry.get(provider_id)
        result = await fetch_all_pages(
            adapter.list_catalog,
            page_size=self._page_size,
            max_chunk_retries=self._max_chunk_retries,
            retry_delay=self._retry_delay,
            chunk_delay=self._chunk_delay,
            on_progress=on_progress,
        )
        # Partial listings are still cached: a later sync retries after the TTL.
        if result.items and not result.aborted and self._cache is not None:
            await self._cache.set(
                cache_key,
                [i.model_dump(mode="json") for i in result.items],
                ttl=self._cache_ttl,
            )
        return result

    async def sync_provider(
        self,
        provider_id: str,
        on_progress: Optional[Callable[[FetchProgress], Optional[bool]]] = None,
    ) -> dict[str, Any]:
        """
        同步一个提供商的目录

        只有完整抓取时才会停用上游已下架的条目，部分结果只做新增/更新。
        """
        adapter = self._registry.get(provider_id)
        result = await self._listings(provider_id, on_progress)
        config = await self._pricing.config()

        summary: dict[str, Any] = {
            "provider": provider_id,
            "fetched": result.fetched,
            "upserted": 0,
            "deactivated": 0,
            "complete": result.complete,
            "error": result.error,
        }
        if not result.items:
            logger.warning("catalog_sync_empty", provider=provider_id, error=result.error)
            return summary

        seen: set[str] = set()
        async with self._uow_factory() as uow:
            for listing in result.items:
                item = self._pricing.to_catalog_item(provider_id, adapter.kind, listing, config)
                await uow.catalog_repository.upsert(item)
                seen.add(item.provider_item_id)
                summary["upserted"] += 1

            if result.complete:
                for stored in await uow.catalog_repository.list_active(provider=provider_id, limit=100_000):
                    if stored.provider_item_id not in seen:
                        stored.is_active = False
                        await uow.catalog_repository.upsert(stored)
                        summary["deactivated"] += 1

        logger.info("catalog_synced", **summary)
        return summary

    async def reprice_all(self) -> int:
        """汇率或加价率变化后重算全部售价"""
        config = await self._pricing.config()
        async with self._uow_factory() as uow:
            items = await uow.catalog_repository.list_active(limit=100_000)
            changed = self._pricing.reprice(items, config)
            for item in changed:
                await uow.catalog_repository.update_price(item)
        return len(changed)
