"""
Application service turning provider wholesale costs into local selling prices.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from application.dtos.providers import CatalogListing
from application.ports.pricing import PricingConfigProvider
from core.logging_config import get_logger
from domain.catalog.entity import CatalogItem, ItemKind
from domain.catalog.pricing import PriceBreakdown, PricingConfig, compute_price


logger = get_logger(__name__)


class PricingService:
    def __init__(self, config_provider: PricingConfigProvider) -> None:
        self._config_provider = config_provider

    async def config(self) -> PricingConfig:
        return await self._config_provider.current()

    async def quote(self, wholesale: Decimal, kind: ItemKind) -> PriceBreakdown:
        return compute_price(wholesale, kind, await self.config())

    def to_catalog_item(
        self,
        provider: str,
        kind: ItemKind,
        listing: CatalogListing,
        config: PricingConfig,
    ) -> CatalogItem:
        breakdown = compute_price(listing.wholesale_cost, kind, config)
        return CatalogItem(
            id=None,
            kind=kind,
            provider=provider,
            provider_item_id=listing.provider_item_id,
            name=listing.name,
            wholesale_cost=listing.wholesale_cost,
            wholesale_currency=listing.currency,
            selling_price=breakdown.selling_price,
            country=listing.country,
            product=listing.product,
            operator=listing.operator,
            available=listing.available,
            quantity_unit=listing.quantity_unit,
            min_quantity=listing.min_quantity,
            max_quantity=listing.max_quantity,
            duration_days=listing.duration_days,
            metadata=dict(listing.metadata),
        )

    def reprice(self, items: Iterable[CatalogItem], config: PricingConfig) -> list[CatalogItem]:
        """Recompute selling prices; returns only the items whose price changed."""
        changed = []
        for item in items:
            breakdown = compute_price(item.wholesale_cost, item.kind, config)
            if item.apply_price(breakdown.selling_price):
                changed.append(item)
        logger.info(
            "catalog_repriced",
            fx_rate=str(config.fx_rate),
            changed=len(changed),
        )
        return changed
