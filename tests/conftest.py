"""Pytest bootstrap configuration.

Point settings at an in-memory database before any application module is
imported, and provide the stub provider, cache and unit-of-work fixtures the
saga, registry and reconciler tests share.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")

from decimal import Decimal
from functools import partial
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dtos.providers import (
    CatalogPage,
    Country,
    PriceQuote,
    ProviderBalance,
    ProviderOrder,
    ProviderOrderRequest,
    Selector,
)
from domain.catalog.entity import CatalogItem, ItemKind
from domain.order.entity import OrderStatus
from domain.wallet.entity import Wallet
from infrastructure.database import build_engine, create_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def quote(provider: str, cost: str, count: Optional[int] = 5, rate: Optional[float] = None, **kw: Any) -> PriceQuote:
    return PriceQuote(provider=provider, cost=Decimal(cost), available_count=count, success_rate=rate, **kw)


class StubProvider:
    """In-memory FulfillmentProvider with scriptable failures."""

    display_name = "Stub"

    def __init__(
        self,
        identifier: str = "stub",
        kind: ItemKind = ItemKind.PHONE_NUMBER,
        *,
        quotes: Optional[list] = None,
        enabled: bool = True,
        uses_reference_as_order_id: bool = False,
    ) -> None:
        self.identifier = identifier
        self.kind = kind
        self.uses_reference_as_order_id = uses_reference_as_order_id
        self.enabled = enabled
        self.quotes = quotes or []
        self.countries: list[Country] = []
        self.pages: list[CatalogPage] = []

        self.availability_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.query_error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None

        self.next_order: Optional[ProviderOrder] = None
        self.query_result: Optional[ProviderOrder] = None

        self.availability_calls = 0
        self.created: list[ProviderOrderRequest] = []
        self.queried: list[str] = []
        self.cancelled: list[str] = []
        self.closed = False

    def is_enabled(self) -> bool:
        return self.enabled

    async def get_availability(self, selector: Selector) -> list[PriceQuote]:
        self.availability_calls += 1
        if self.availability_error is not None:
            raise self.availability_error
        return list(self.quotes)

    async def get_countries(self) -> list[Country]:
        return list(self.countries)

    async def get_balance(self) -> ProviderBalance:
        if self.balance_error is not None:
            raise self.balance_error
        return ProviderBalance(provider=self.identifier, balance=Decimal("42.50"))

    async def create_order(self, req: ProviderOrderRequest) -> ProviderOrder:
        self.created.append(req)
        if self.create_error is not None:
            raise self.create_error
        if self.next_order is not None:
            return self.next_order
        order_id = req.reference if self.uses_reference_as_order_id else f"{self.identifier}-{len(self.created)}"
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=order_id,
            raw_status="PENDING",
            status=OrderStatus.PROCESSING,
            fulfillment={"phone": "+2348000000001"},
        )

    async def query_order(self, provider_order_id: str) -> ProviderOrder:
        self.queried.append(provider_order_id)
        if self.query_error is not None:
            raise self.query_error
        if self.query_result is not None:
            return self.query_result
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=provider_order_id,
            raw_status="PENDING",
            status=OrderStatus.PROCESSING,
        )

    async def cancel_order(self, provider_order_id: str) -> None:
        self.cancelled.append(provider_order_id)
        if self.cancel_error is not None:
            raise self.cancel_error

    async def list_catalog(self, limit: int, offset: int) -> CatalogPage:
        index = offset // limit if limit else 0
        if index < len(self.pages):
            return self.pages[index]
        return CatalogPage(items=[], total=None)

    async def aclose(self) -> None:
        self.closed = True


class MemoryCache:
    """Dict-backed Cache port; ttl is recorded but not enforced."""

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.ttls: dict[str, Optional[int]] = {}

    async def get(self, key: str) -> Any:
        return self.store.get(key)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.store[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.store.pop(key, None) is not None


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite://")
    await create_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    return partial(SQLAlchemyUnitOfWork, session_factory)


async def create_wallet(uow_factory, user_id: int, balance: str) -> Wallet:
    async with uow_factory() as uow:
        return await uow.wallet_repository.create(Wallet(user_id=user_id, balance=Decimal(balance)))


async def get_balance(uow_factory, user_id: int) -> Decimal:
    async with uow_factory(readonly=True) as uow:
        wallet = await uow.wallet_repository.get(user_id)
    return wallet.balance


async def create_item(uow_factory, **overrides: Any) -> CatalogItem:
    fields: dict[str, Any] = dict(
        id=None,
        kind=ItemKind.PHONE_NUMBER,
        provider="stub",
        provider_item_id="usa/any/whatsapp",
        name="WhatsApp USA",
        wholesale_cost=Decimal("1.50"),
        selling_price=Decimal("3000.00"),
        country="usa",
        product="whatsapp",
        operator="any",
    )
    fields.update(overrides)
    async with uow_factory() as uow:
        return await uow.catalog_repository.upsert(CatalogItem(**fields))
