"""
5sim.net activation numbers adapter.

Prices and countries come from the public `/guest` endpoints; purchases and
order checks use the bearer-authenticated `/user` endpoints.
"""
from __future__ import annotations

from typing import Any, Optional

from application.dtos.providers import (
    Country,
    PriceQuote,
    ProviderBalance,
    ProviderOrder,
    ProviderOrderRequest,
    Selector,
)
from core.settings import FiveSimSettings, provider_settings
from domain.catalog.entity import ItemKind
from domain.common.exceptions import ProviderRejectedException, ProviderUnavailableException
from infrastructure.external.api_clients import EnvelopeError
from infrastructure.external.providers.base import BaseProviderAdapter, parse_datetime, to_decimal


class FiveSimAdapter(BaseProviderAdapter):
    identifier = "5sim"
    display_name = "5SIM"
    kind = ItemKind.PHONE_NUMBER

    def __init__(self, config: Optional[FiveSimSettings] = None, **kwargs: Any) -> None:
        super().__init__(config or provider_settings.fivesim, **kwargs)
        if self.config.api_key:
            self.client.set_auth_token(self.config.api_key)

    def _envelope(self, data: Any) -> Optional[EnvelopeError]:
        # 5sim answers some failures with a bare text body, e.g. "no free phones".
        if isinstance(data, str):
            return EnvelopeError(message=data, code=data.replace(" ", "_").upper()[:64])
        return super()._envelope(data)

    async def get_balance(self) -> ProviderBalance:
        try:
            data = self._unwrap(await self.client.call("GET", "/user/profile", caller="get_balance"), "get_balance")
        except (ProviderRejectedException, ProviderUnavailableException) as exc:
            return self._balance_failure(exc)
        return ProviderBalance(provider=self.identifier, balance=to_decimal(data.get("balance")), currency="RUB")

    async def get_countries(self) -> list[Country]:
        data = self._unwrap(await self.client.call("GET", "/guest/countries", caller="get_countries"), "get_countries")
        countries = []
        for code, info in (data or {}).items():
            info = info if isinstance(info, dict) else {}
            name = info.get("text_en") or info.get("name") or code.replace("_", " ").title()
            countries.append(Country(code=code, name=name, provider=self.identifier))
        return countries

    async def get_availability(self, selector: Selector) -> list[PriceQuote]:
        query = {}
        if selector.country:
            query["country"] = selector.country
        if selector.product:
            query["product"] = selector.product
        data = self._unwrap(
            await self.client.call("GET", "/guest/prices", query=query, caller="get_availability"),
            "get_availability",
        )

        quotes: list[PriceQuote] = []
        for country, products in (data or {}).items():
            if not isinstance(products, dict):
                continue
            for product, operators in products.items():
                if not isinstance(operators, dict):
                    continue
                for operator, info in operators.items():
                    if not isinstance(info, dict):
                        continue
                    quotes.append(PriceQuote(
                        provider=self.identifier,
                        cost=to_decimal(info.get("cost")),
                        currency="RUB",
                        country=country,
                        product=product,
                        operator=operator,
                        provider_item_id=f"{country}/{operator}/{product}",
                        available_count=int(info.get("count") or 0),
                        success_rate=info.get("rate"),
                    ))
        return quotes

    def _order(self, data: dict) -> ProviderOrder:
        raw_status = data.get("status")
        fulfillment: dict[str, Any] = {
            "phone": data.get("phone"),
            "operator": data.get("operator"),
            "country": data.get("country"),
            "product": data.get("product"),
        }
        sms = [
            {
                "code": m.get("code"),
                "text": m.get("text", ""),
                "sender": m.get("sender"),
                "created_at": m.get("created_at"),
            }
            for m in data.get("sms") or []
            if isinstance(m, dict)
        ]
        if sms:
            fulfillment["sms"] = sms
            fulfillment["code"] = sms[-1]["code"]
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=str(data["id"]),
            raw_status=raw_status,
            status=self.map_status(raw_status),
            fulfillment={k: v for k, v in fulfillment.items() if v is not None},
            expires_at=parse_datetime(data.get("expires")),
            cost=to_decimal(data.get("price")) if data.get("price") is not None else None,
        )

    async def create_order(self, req: ProviderOrderRequest) -> ProviderOrder:
        country, product, operator = req.country, req.product, req.operator
        # provider_item_id is "country/operator/product"
        parts = req.provider_item_id.split("/")
        if len(parts) == 3:
            country = country or parts[0]
            operator = operator or parts[1]
            product = product or parts[2]
        if not country or not product:
            raise ProviderRejectedException(
                "Country and product are required",
                provider=self.identifier,
                provider_code="BAD_REQUEST",
            )
        endpoint = f"/user/buy/activation/{country}/{operator or 'any'}/{product}"
        data = self._unwrap(await self.client.call("GET", endpoint, caller="create_order"), "create_order")
        order = self._order(data)
        self._log("provider_order_created", provider_order_id=order.provider_order_id, reference=req.reference)
        return order

    async def query_order(self, provider_order_id: str) -> ProviderOrder:
        data = self._unwrap(
            await self.client.call("GET", f"/user/check/{provider_order_id}", caller="query_order"),
            "query_order",
        )
        return self._order(data)

    async def cancel_order(self, provider_order_id: str) -> None:
        self._unwrap(
            await self.client.call("GET", f"/user/cancel/{provider_order_id}", caller="cancel_order"),
            "cancel_order",
        )
        self._log("provider_order_cancelled", provider_order_id=provider_order_id)
