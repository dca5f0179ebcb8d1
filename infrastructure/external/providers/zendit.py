"""
Zendit eSIM adapter.

The purchase transaction id is the ledger reference we generate, so a purchase
can be looked up even when the create response was lost.
"""
from __future__ import annotations

from typing import Any, Optional

from application.dtos.providers import (
    CatalogListing,
    CatalogPage,
    Country,
    PriceQuote,
    ProviderBalance,
    ProviderOrder,
    ProviderOrderRequest,
    Selector,
)
from core.settings import ZenditSettings, provider_settings
from domain.catalog.entity import ItemKind
from domain.common.exceptions import ProviderRejectedException, ProviderUnavailableException
from infrastructure.external.providers.base import BaseProviderAdapter, parse_datetime, to_decimal


MAX_PAGE_SIZE = 500
# Purchases can take a while upstream.
PURCHASE_TIMEOUT = 60.0


def offer_price(offer: dict) -> tuple[Any, str]:
    """Offer cost and currency; accepts a flat number or a {fixed, currencyDivisor} object."""
    price = offer.get("price")
    if isinstance(price, dict):
        divisor = to_decimal(price.get("currencyDivisor"), "1") or 1
        return to_decimal(price.get("fixed")) / divisor, price.get("currency") or offer.get("priceCurrency") or "USD"
    return to_decimal(price), offer.get("priceCurrency") or "USD"


def lpa_string(smdp_address: Optional[str], activation_code: Optional[str]) -> Optional[str]:
    if smdp_address and activation_code:
        return f"LPA:1${smdp_address}${activation_code}"
    return None


class ZenditAdapter(BaseProviderAdapter):
    identifier = "zendit"
    display_name = "Zendit"
    kind = ItemKind.ESIM
    uses_reference_as_order_id = True

    def __init__(self, config: Optional[ZenditSettings] = None, **kwargs: Any) -> None:
        super().__init__(config or provider_settings.zendit, **kwargs)
        if self.config.api_key:
            self.client.set_auth_token(self.config.api_key)

    async def get_balance(self) -> ProviderBalance:
        try:
            data = self._unwrap(await self.client.call("GET", "/balance", caller="get_balance"), "get_balance")
        except (ProviderRejectedException, ProviderUnavailableException) as exc:
            return self._balance_failure(exc)
        return ProviderBalance(
            provider=self.identifier,
            balance=to_decimal(data.get("availableBalance", data.get("balance"))),
            currency=data.get("currencyCode") or data.get("currency") or "USD",
        )

    async def _offers(self, limit: int, offset: int, country: Optional[str] = None) -> dict:
        query: dict[str, Any] = {
            "_limit": min(max(limit, 1), MAX_PAGE_SIZE),
            "_offset": max(offset, 0),
        }
        if country:
            query["country"] = country.upper()
        data = self._unwrap(
            await self.client.call("GET", "/esim/offers", query=query, caller="list_offers"),
            "list_offers",
        )
        return data if isinstance(data, dict) else {"list": data or []}

    def _listing(self, offer: dict) -> CatalogListing:
        cost, currency = offer_price(offer)
        country = (offer.get("country") or "").upper() or None
        data_gb = offer.get("dataGB")
        volume = "Unlimited" if offer.get("dataUnlimited") else f"{data_gb}GB" if data_gb else ""
        duration = offer.get("durationDays")
        name = " ".join(str(p) for p in (offer.get("brand"), country, volume, f"{duration} days" if duration else None) if p)
        return CatalogListing(
            provider_item_id=str(offer["offerId"]),
            name=name or str(offer["offerId"]),
            wholesale_cost=cost,
            currency=currency,
            country=country,
            product="esim",
            duration_days=int(duration) if duration else None,
            metadata={
                k: offer.get(k)
                for k in ("brand", "dataGB", "dataUnlimited", "dataSpeeds", "regions", "roaming",
                          "voiceMinutes", "smsNumber", "priceType", "productType")
                if offer.get(k) is not None
            },
        )

    async def list_catalog(self, limit: int, offset: int) -> CatalogPage:
        data = await self._offers(limit, offset)
        total = data.get("total")
        return CatalogPage(
            items=[self._listing(o) for o in data.get("list") or [] if isinstance(o, dict) and o.get("offerId")],
            total=int(total) if total is not None else None,
        )

    async def get_availability(self, selector: Selector) -> list[PriceQuote]:
        data = await self._offers(MAX_PAGE_SIZE, 0, selector.country)
        quotes = []
        for offer in data.get("list") or []:
            if not isinstance(offer, dict) or not offer.get("offerId"):
                continue
            cost, currency = offer_price(offer)
            quotes.append(PriceQuote(
                provider=self.identifier,
                cost=cost,
                currency=currency,
                country=(offer.get("country") or selector.country or "").lower() or None,
                product=selector.product or "esim",
                operator=offer.get("brand"),
                provider_item_id=str(offer["offerId"]),
                available_count=None,
            ))
        return quotes

    async def get_countries(self) -> list[Country]:
        data = await self._offers(MAX_PAGE_SIZE, 0)
        codes = sorted({(o.get("country") or "").upper() for o in data.get("list") or [] if isinstance(o, dict)} - {""})
        return [Country(code=code, name=code, provider=self.identifier) for code in codes]

    def _order(self, transaction_id: str, data: dict) -> ProviderOrder:
        raw_status = data.get("status")
        confirmation = data.get("confirmation") or {}
        smdp_address = confirmation.get("smdpAddress")
        activation_code = confirmation.get("activationCode")
        fulfillment = {
            "iccid": confirmation.get("iccid"),
            "smdp_address": smdp_address,
            "activation_code": activation_code,
            "external_reference_id": confirmation.get("externalReferenceId"),
            "qr_code_data": lpa_string(smdp_address, activation_code),
        }
        cost = data.get("cost")
        if isinstance(cost, dict):
            cost = to_decimal(cost.get("fixed")) / (to_decimal(cost.get("currencyDivisor"), "1") or 1)
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=transaction_id,
            raw_status=raw_status,
            status=self.map_status(raw_status),
            fulfillment={k: v for k, v in fulfillment.items() if v},
            expires_at=parse_datetime(data.get("expiresAt") or data.get("expiration")),
            cost=to_decimal(cost) if cost is not None else None,
        )

    async def create_order(self, req: ProviderOrderRequest) -> ProviderOrder:
        body = {"transactionId": req.reference, "offerId": req.provider_item_id}
        data = self._unwrap(
            await self.client.call("POST", "/esim/purchases", body=body, timeout=PURCHASE_TIMEOUT, caller="create_order"),
            "create_order",
        )
        order = self._order(req.reference, data or {})
        self._log("provider_order_created", provider_order_id=req.reference, status=order.raw_status)
        return order

    async def query_order(self, provider_order_id: str) -> ProviderOrder:
        data = self._unwrap(
            await self.client.call("GET", f"/esim/purchases/{provider_order_id}", caller="query_order"),
            "query_order",
        )
        order = self._order(provider_order_id, data or {})
        if order.raw_status == "DONE":
            qr_code_url = await self._qr_code(provider_order_id)
            if qr_code_url:
                order.fulfillment["qr_code_url"] = qr_code_url
        return order

    async def _qr_code(self, transaction_id: str) -> Optional[str]:
        result = await self.client.call("GET", f"/esim/purchases/{transaction_id}/qrcode", caller="qr_code")
        if not result.success or not isinstance(result.data, dict):
            self._log("provider_qr_code_unavailable", provider_order_id=transaction_id, error=result.message)
            return None
        return result.data.get("qrCode")

    async def cancel_order(self, provider_order_id: str) -> None:
        self._unwrap(
            await self.client.call("POST", f"/esim/purchases/{provider_order_id}/refund", caller="cancel_order"),
            "cancel_order",
        )
        self._log("provider_refund_requested", provider_order_id=provider_order_id)
