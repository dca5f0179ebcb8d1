"""
Fulfillment provider port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.providers import (
    CatalogPage,
    Country,
    PriceQuote,
    ProviderBalance,
    ProviderOrder,
    ProviderOrderRequest,
    Selector,
)
from domain.catalog.entity import ItemKind


@runtime_checkable
class FulfillmentProvider(Protocol):
    """Capability set shared by phone-number, eSIM and SMM providers.

    Every method may raise ProviderUnavailableException (transient, caller may
    retry or fall back) or ProviderRejectedException (permanent).
    """

    identifier: str
    display_name: str
    kind: ItemKind
    # True when the upstream order id is the reference we sent, so an order can
    # be looked up even if we never saw the create response.
    uses_reference_as_order_id: bool

    def is_enabled(self) -> bool: ...

    async def get_availability(self, selector: Selector) -> list[PriceQuote]: ...

    async def get_countries(self) -> list[Country]: ...

    async def get_balance(self) -> ProviderBalance: ...

    async def create_order(self, req: ProviderOrderRequest) -> ProviderOrder: ...

    async def query_order(self, provider_order_id: str) -> ProviderOrder: ...

    async def cancel_order(self, provider_order_id: str) -> None: ...

    async def list_catalog(self, limit: int, offset: int) -> CatalogPage: ...

    async def aclose(self) -> None: ...
