"""
Composition root.

Wires the registration table, unit of work, cache and pricing configuration
into the application services. Callers (API layer, Celery tasks) build one
`Services` bundle and close it when done.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from application.ports.cache import Cache
from application.ports.scheduler import TaskScheduler
from application.services.catalog_sync import CatalogSyncService
from application.services.pricing_service import PricingService
from application.services.provider_registry import ProviderRegistry
from application.services.purchase_service import PurchaseService
from application.services.reconciler import StatusReconciler
from core.config import settings
from core.logging_config import get_logger
from domain.referral.entity import CommissionPolicy
from infrastructure.cache import get_redis_cache
from infrastructure.external.providers import build_registry
from infrastructure.pricing_config import SettingsPricingConfigProvider
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


@dataclass
class Services:
    registry: ProviderRegistry
    purchases: PurchaseService
    reconciler: StatusReconciler
    catalog: CatalogSyncService

    async def aclose(self) -> None:
        await self.registry.aclose()


def commission_policy() -> CommissionPolicy:
    return CommissionPolicy(
        first_purchases=settings.referral.first_purchases,
        first_rate=settings.referral.first_rate,
        later_rate=settings.referral.later_rate,
    )


async def _cache() -> Optional[Cache]:
    if not settings.redis.url:
        return None
    try:
        return await get_redis_cache()
    except Exception as exc:
        # Caching is advisory: run uncached rather than fail the caller.
        logger.error("redis_cache_init_failed", error=str(exc))
        return None


async def build_services(
    registry: Optional[ProviderRegistry] = None,
    scheduler: Optional[TaskScheduler] = None,
) -> Services:
    """`scheduler` enables the delayed status refresh after a purchase; workers pass none."""
    cache = await _cache()
    registry = registry or build_registry(cache=cache)
    pricing = PricingService(SettingsPricingConfigProvider())
    return Services(
        registry=registry,
        purchases=PurchaseService(
            SQLAlchemyUnitOfWork,
            registry,
            commission_policy=commission_policy(),
            selection_policy=settings.registry.selection_policy,
            scheduler=scheduler,
            refresh_after=settings.reconcile.interval_seconds,
        ),
        reconciler=StatusReconciler(SQLAlchemyUnitOfWork, registry),
        catalog=CatalogSyncService(
            SQLAlchemyUnitOfWork,
            registry,
            pricing,
            cache=cache,
            cache_ttl=settings.registry.catalog_cache_ttl,
            page_size=settings.reconcile.chunk_size,
            max_chunk_retries=settings.reconcile.max_chunk_retries,
            retry_delay=settings.reconcile.chunk_retry_delay,
            chunk_delay=settings.reconcile.chunk_delay,
        ),
    )
