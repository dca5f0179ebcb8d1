"""
Provider DTOs (Pydantic v2) used at the application/provider boundary.

Adapters translate each upstream's payloads into these shapes; nothing
provider-specific leaks past them.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from domain.catalog.entity import ItemKind
from domain.order.entity import OrderStatus


class Selector(BaseModel):
    """What the caller wants: a kind of good for a country/product pair."""

    kind: ItemKind = ItemKind.PHONE_NUMBER
    country: Optional[str] = None
    product: Optional[str] = None

    @field_validator("country", "product")
    @classmethod
    def _normalise(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    def cache_key(self) -> str:
        return f"{self.kind.value}:{self.country or '*'}:{self.product or '*'}"


class PriceQuote(BaseModel):
    provider: str
    cost: Decimal
    currency: str = "USD"
    country: Optional[str] = None
    product: Optional[str] = None
    operator: Optional[str] = None
    provider_item_id: Optional[str] = None
    # None means the provider does not limit stock (eSIM offers, SMM services).
    available_count: Optional[int] = None
    success_rate: Optional[float] = None

    @property
    def is_available(self) -> bool:
        return self.available_count is None or self.available_count > 0


class Country(BaseModel):
    code: str
    name: str
    provider: Optional[str] = None


class ProviderBalance(BaseModel):
    provider: str
    success: bool = True
    enabled: bool = True
    balance: Decimal = Decimal("0")
    currency: str = "USD"
    message: Optional[str] = None


class ProviderOrderRequest(BaseModel):
    """Everything an adapter needs to place one upstream order."""

    reference: str
    provider_item_id: str
    quantity: int = Field(default=1, gt=0)
    country: Optional[str] = None
    product: Optional[str] = None
    operator: Optional[str] = None
    target: Optional[str] = None


class ProviderOrder(BaseModel):
    provider: str
    provider_order_id: str
    # Verbatim provider status; `status` is its mapping to the internal enum.
    raw_status: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    fulfillment: dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None
    cost: Optional[Decimal] = None


class CatalogListing(BaseModel):
    """One purchasable unit as reported by a provider's listing endpoint."""

    provider_item_id: str
    name: str
    wholesale_cost: Decimal
    currency: str = "USD"
    country: Optional[str] = None
    product: Optional[str] = None
    operator: Optional[str] = None
    available: Optional[int] = None
    quantity_unit: int = 1
    min_quantity: int = 1
    max_quantity: int = 1
    duration_days: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CatalogPage(BaseModel):
    items: list[CatalogListing] = Field(default_factory=list)
    # None when the provider does not report a total.
    total: Optional[int] = None


class RefundResult(BaseModel):
    order_id: int
    reference: str
    amount: Decimal
    balance_after: Decimal
    status: OrderStatus
