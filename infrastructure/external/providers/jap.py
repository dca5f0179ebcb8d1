"""
JustAnotherPanel (SMM) adapter.

All actions are form POSTs to one endpoint with `key` and `action` fields.
Service rates are quoted per 1000 units.
"""
from __future__ import annotations

from typing import Any, Optional

from application.dtos.providers import (
    CatalogListing,
    CatalogPage,
    PriceQuote,
    ProviderBalance,
    ProviderOrder,
    ProviderOrderRequest,
    Selector,
)
from core.settings import JapSettings, provider_settings
from domain.catalog.entity import ItemKind
from domain.common.exceptions import ProviderRejectedException, ProviderUnavailableException
from domain.order.entity import OrderStatus
from infrastructure.external.providers.base import BaseProviderAdapter, to_decimal


RATE_UNIT = 1000

_SERVICE_TYPES = (
    ("followers", ("followers", "subscriber")),
    ("likes", ("likes",)),
    ("views", ("views",)),
    ("comments", ("comments",)),
    ("shares", ("shares",)),
)


def extract_service_type(name: str) -> str:
    lowered = name.lower()
    for service_type, needles in _SERVICE_TYPES:
        if any(n in lowered for n in needles):
            return service_type
    return "other"


class JapAdapter(BaseProviderAdapter):
    identifier = "jap"
    display_name = "JustAnotherPanel"
    kind = ItemKind.SMM

    def __init__(self, config: Optional[JapSettings] = None, **kwargs: Any) -> None:
        super().__init__(config or provider_settings.jap, **kwargs)

    async def _action(self, action: str, **fields: Any) -> Any:
        form = {"key": self.config.api_key, "action": action}
        form.update({k: v for k, v in fields.items() if v is not None})
        return self._unwrap(await self.client.call("POST", "", form=form, caller=action), action)

    def map_status(self, provider_status: Optional[str]) -> OrderStatus:
        return super().map_status(provider_status.strip().lower() if provider_status else None)

    async def get_balance(self) -> ProviderBalance:
        try:
            data = await self._action("balance")
        except (ProviderRejectedException, ProviderUnavailableException) as exc:
            return self._balance_failure(exc)
        return ProviderBalance(
            provider=self.identifier,
            balance=to_decimal(data.get("balance")),
            currency=data.get("currency") or "USD",
        )

    async def _services(self) -> list[dict]:
        data = await self._action("services")
        return [s for s in data or [] if isinstance(s, dict) and s.get("service") is not None]

    def _listing(self, service: dict) -> CatalogListing:
        name = str(service.get("name") or service["service"])
        return CatalogListing(
            provider_item_id=str(service["service"]),
            name=name,
            wholesale_cost=to_decimal(service.get("rate")),
            currency="USD",
            product=extract_service_type(name),
            quantity_unit=RATE_UNIT,
            min_quantity=int(service.get("min") or 1),
            max_quantity=int(service.get("max") or 1),
            metadata={
                "category": service.get("category") or "Unknown",
                "type": service.get("type"),
                "refill": bool(service.get("refill", False)),
                "cancel": bool(service.get("cancel", False)),
                "description": service.get("description") or "",
            },
        )

    async def list_catalog(self, limit: int, offset: int) -> CatalogPage:
        # The panel has no server-side paging: slice the full list.
        services = await self._services()
        page = services[offset:offset + limit]
        return CatalogPage(items=[self._listing(s) for s in page], total=len(services))

    async def get_availability(self, selector: Selector) -> list[PriceQuote]:
        quotes = []
        for service in await self._services():
            listing = self._listing(service)
            if selector.product and selector.product not in (listing.product, listing.metadata["category"].lower()):
                continue
            quotes.append(PriceQuote(
                provider=self.identifier,
                cost=listing.wholesale_cost,
                currency="USD",
                product=listing.product,
                provider_item_id=listing.provider_item_id,
                available_count=None,
            ))
        return quotes

    def _order(self, order_id: str, data: dict) -> ProviderOrder:
        raw_status = data.get("status")
        fulfillment = {
            "start_count": int(data["start_count"]) if data.get("start_count") not in (None, "") else None,
            "remains": int(data["remains"]) if data.get("remains") not in (None, "") else None,
            "charge": str(data["charge"]) if data.get("charge") not in (None, "") else None,
            "currency": data.get("currency"),
        }
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=order_id,
            raw_status=raw_status,
            status=self.map_status(raw_status),
            fulfillment={k: v for k, v in fulfillment.items() if v is not None},
            cost=to_decimal(data.get("charge")) if data.get("charge") not in (None, "") else None,
        )

    async def create_order(self, req: ProviderOrderRequest) -> ProviderOrder:
        if not req.target:
            raise ProviderRejectedException("A target link is required", provider=self.identifier, provider_code="NO_LINK")
        data = await self._action("add", service=req.provider_item_id, link=req.target, quantity=req.quantity)
        order_id = str(data.get("order") or "")
        if not order_id:
            raise ProviderRejectedException(
                "Invalid response from provider",
                provider=self.identifier,
                provider_code="INVALID_RESPONSE",
            )
        self._log("provider_order_created", provider_order_id=order_id, reference=req.reference)
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=order_id,
            raw_status="Pending",
            status=self.map_status("Pending"),
            fulfillment={"link": req.target, "quantity": req.quantity},
        )

    async def query_order(self, provider_order_id: str) -> ProviderOrder:
        data = await self._action("status", order=provider_order_id)
        return self._order(provider_order_id, data or {})

    async def cancel_order(self, provider_order_id: str) -> None:
        data = await self._action("cancel", order=provider_order_id)
        # Bulk-style answer: [{"order": id, "cancel": {"error": ...}}]
        if isinstance(data, list):
            for entry in data:
                error = (entry.get("cancel") or {}).get("error") if isinstance(entry, dict) else None
                if error:
                    raise ProviderRejectedException(str(error), provider=self.identifier, provider_code="CANCEL_FAILED")
        self._log("provider_order_cancelled", provider_order_id=provider_order_id)
