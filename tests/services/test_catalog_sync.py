from decimal import Decimal

import pytest

from application.dtos.providers import CatalogListing, CatalogPage
from application.services.catalog_sync import CatalogSyncService
from application.services.pricing_service import PricingService
from application.services.provider_registry import ProviderRegistry
from core.config import PricingSettings
from domain.catalog.entity import ItemKind
from domain.catalog.pricing import PricingConfig
from domain.common.exceptions import ProviderUnavailableException
from infrastructure.pricing_config import SettingsPricingConfigProvider

from tests.conftest import StubProvider


class StaticPricing:
    def __init__(self, fx_rate="1000", markup="10"):
        self.config = PricingConfig(fx_rate=Decimal(fx_rate), markups={ItemKind.SMM: Decimal(markup)})

    async def current(self):
        return self.config


def _listing(item_id, cost="1.00"):
    return CatalogListing(
        provider_item_id=item_id,
        name=f"Service {item_id}",
        wholesale_cost=Decimal(cost),
        product="followers",
        quantity_unit=1000,
        min_quantity=100,
        max_quantity=10000,
    )


def _service(uow_factory, provider, pricing=None, **kwargs):
    kwargs.setdefault("page_size", 2)
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("chunk_delay", 0)
    return CatalogSyncService(
        uow_factory,
        ProviderRegistry([provider]),
        PricingService(pricing or StaticPricing()),
        **kwargs,
    )


async def _active(uow_factory, provider_id):
    async with uow_factory(readonly=True) as uow:
        items = await uow.catalog_repository.list_active(provider=provider_id)
    return {i.provider_item_id: i for i in items}


@pytest.mark.asyncio
async def test_sync_prices_and_upserts_every_page(uow_factory):
    provider = StubProvider("jap", ItemKind.SMM)
    provider.pages = [
        CatalogPage(items=[_listing("1"), _listing("2", "2.50")], total=3),
        CatalogPage(items=[_listing("3")], total=3),
    ]

    summary = await _service(uow_factory, provider).sync_provider("jap")

    assert summary["upserted"] == 3
    assert summary["complete"]
    items = await _active(uow_factory, "jap")
    assert set(items) == {"1", "2", "3"}
    assert items["2"].selling_price == Decimal("2750.00")
    assert items["2"].kind == ItemKind.SMM
    assert items["1"].quantity_unit == 1000


@pytest.mark.asyncio
async def test_complete_sync_deactivates_delisted_items(uow_factory):
    provider = StubProvider("jap", ItemKind.SMM)
    provider.pages = [CatalogPage(items=[_listing("1"), _listing("2")], total=2)]
    await _service(uow_factory, provider).sync_provider("jap")

    provider.pages = [CatalogPage(items=[_listing("2")], total=1)]
    summary = await _service(uow_factory, provider).sync_provider("jap")

    assert summary["deactivated"] == 1
    assert set(await _active(uow_factory, "jap")) == {"2"}


@pytest.mark.asyncio
async def test_partial_sync_never_deactivates(uow_factory):
    provider = StubProvider("jap", ItemKind.SMM)
    provider.pages = [CatalogPage(items=[_listing("1"), _listing("2")], total=4)]
    await _service(uow_factory, provider).sync_provider("jap")

    class Flaky(StubProvider):
        async def list_catalog(self, limit, offset):
            if offset >= 2:
                raise ProviderUnavailableException("timeout", provider="jap")
            return CatalogPage(items=[_listing("2"), _listing("5")], total=4)

    flaky = Flaky("jap", ItemKind.SMM)
    summary = await _service(uow_factory, flaky, max_chunk_retries=1).sync_provider("jap")

    assert not summary["complete"]
    assert summary["deactivated"] == 0
    assert set(await _active(uow_factory, "jap")) == {"1", "2", "5"}


@pytest.mark.asyncio
async def test_sync_uses_listing_cache(uow_factory, memory_cache):
    provider = StubProvider("jap", ItemKind.SMM)
    provider.pages = [CatalogPage(items=[_listing("1")], total=1)]
    service = _service(uow_factory, provider, cache=memory_cache, cache_ttl=60)

    await service.sync_provider("jap")
    provider.pages = []
    summary = await service.sync_provider("jap")

    assert summary["fetched"] == 1
    assert memory_cache.ttls["catalog:jap"] == 60


@pytest.mark.asyncio
async def test_empty_listing_changes_nothing(uow_factory):
    provider = StubProvider("jap", ItemKind.SMM)
    provider.pages = [CatalogPage(items=[_listing("1")], total=1)]
    await _service(uow_factory, provider).sync_provider("jap")

    provider.pages = []
    summary = await _service(uow_factory, provider).sync_provider("jap")

    assert summary["upserted"] == 0
    assert set(await _active(uow_factory, "jap")) == {"1"}


@pytest.mark.asyncio
async def test_reprice_all_after_fx_change(uow_factory):
    provider = StubProvider("jap", ItemKind.SMM)
    provider.pages = [CatalogPage(items=[_listing("1"), _listing("2", "3.00")], total=2)]
    await _service(uow_factory, provider).sync_provider("jap")

    changed = await _service(uow_factory, provider, StaticPricing(fx_rate="1500")).reprice_all()
    unchanged = await _service(uow_factory, provider, StaticPricing(fx_rate="1500")).reprice_all()

    assert (changed, unchanged) == (2, 0)
    items = await _active(uow_factory, "jap")
    assert items["1"].selling_price == Decimal("1650.00")
    assert items["2"].selling_price == Decimal("4950.00")


@pytest.mark.asyncio
async def test_settings_pricing_provider_maps_markups():
    pricing = PricingSettings(fx_rate=Decimal("1600"), phone_markup=Decimal("25"), esim_markup=Decimal("15"), smm_markup=Decimal("30"))

    config = await SettingsPricingConfigProvider(pricing).current()

    assert config.fx_rate == Decimal("1600")
    assert config.markup_for(ItemKind.PHONE_NUMBER) == Decimal("25")
    assert config.markup_for(ItemKind.ESIM) == Decimal("15")
    assert config.markup_for(ItemKind.SMM) == Decimal("30")
