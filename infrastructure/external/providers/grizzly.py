"""
GrizzlySMS adapter (sms-activate compatible handler API).

Every call is a GET to a single handler URL with `api_key` and `action` in the
query string. Responses are either JSON or colon-separated text tokens
(`ACCESS_BALANCE:12.50`, `ACCESS_NUMBER:id:phone`, `STATUS_OK:code`).
Error tokens arrive with HTTP 200 and are translated into readable messages.
"""
from __future__ import annotations

import json
import re
from datetime import timedelta
from typing import Any, Optional

from application.dtos.providers import (
    Country,
    PriceQuote,
    ProviderBalance,
    ProviderOrder,
    ProviderOrderRequest,
    Selector,
)
from core.settings import GrizzlySettings, provider_settings
from domain.catalog.entity import ItemKind
from domain.common.clock import utcnow
from domain.common.exceptions import ProviderRejectedException, ProviderUnavailableException
from infrastructure.external.api_clients import EnvelopeError
from infrastructure.external.providers.base import BaseProviderAdapter, to_decimal


SET_STATUS_CANCEL = 8
# Activations stay open for 20 minutes upstream.
ACTIVATION_TTL = timedelta(minutes=20)

ERROR_MESSAGES = {
    "NO_NUMBERS": "No numbers available for this service",
    "NO_BALANCE": "Provider has insufficient balance",
    "WRONG_SERVICE": "Invalid service selected",
    "WRONG_COUNTRY": "Invalid country selected",
    "WRONG_OPERATOR": "Invalid operator selected",
    "BANNED": "Service temporarily unavailable",
    "BAD_KEY": "Provider configuration error",
    "BAD_ACTION": "Provider configuration error",
    "ERROR_SQL": "Provider internal error",
    "BAD_STATUS": "Invalid order status",
    "NO_ACTIVATION": "Order not found",
    "WRONG_ACTIVATION_ID": "Invalid order ID",
}

SERVICE_CODES = {
    "whatsapp": "wa",
    "telegram": "tg",
    "instagram": "ig",
    "facebook": "fb",
    "twitter": "tw",
    "google": "go",
    "yahoo": "ya",
    "microsoft": "mm",
    "amazon": "am",
    "uber": "ub",
    "paypal": "pp",
    "linkedin": "oi",
    "discord": "ds",
    "tiktok": "tk",
    "snapchat": "fu",
    "netflix": "nf",
    "spotify": "sy",
    "viber": "vi",
    "wechat": "wb",
    "line": "me",
    "kakaotalk": "kt",
}

COUNTRY_CODES = {
    "russia": "0",
    "ukraine": "1",
    "kazakhstan": "2",
    "china": "3",
    "philippines": "4",
    "myanmar": "5",
    "indonesia": "6",
    "malaysia": "7",
    "kenya": "8",
    "tanzania": "9",
    "vietnam": "10",
    "kyrgyzstan": "11",
    "usa": "12",
    "israel": "13",
    "hongkong": "14",
    "poland": "15",
    "england": "16",
    "uk": "16",
    "madagascar": "17",
    "dcongo": "18",
    "nigeria": "19",
    "macau": "20",
    "egypt": "21",
    "india": "22",
    "ireland": "23",
    "cambodia": "24",
    "laos": "25",
    "haiti": "26",
    "ivorycoast": "27",
    "gambia": "28",
    "serbia": "29",
    "yemen": "30",
    "southafrica": "31",
    "romania": "32",
    "colombia": "33",
    "estonia": "34",
    "azerbaijan": "35",
    "canada": "36",
    "morocco": "37",
    "ghana": "38",
    "argentina": "39",
    "uzbekistan": "40",
    "cameroon": "41",
    "chad": "42",
    "germany": "43",
    "lithuania": "44",
    "croatia": "45",
    "sweden": "46",
    "iraq": "47",
    "netherlands": "48",
    "latvia": "49",
    "austria": "50",
    "belarus": "51",
    "thailand": "52",
    "saudiarabia": "53",
    "mexico": "54",
    "taiwan": "55",
    "spain": "56",
    "iran": "57",
    "algeria": "58",
    "slovenia": "59",
    "bangladesh": "60",
    "senegal": "61",
    "turkey": "62",
    "czech": "63",
    "srilanka": "64",
    "peru": "65",
    "pakistan": "66",
    "newzealand": "67",
    "guinea": "68",
    "mali": "69",
    "venezuela": "70",
    "ethiopia": "71",
    "mongolia": "72",
    "brazil": "73",
    "afghanistan": "74",
    "uganda": "75",
    "angola": "76",
    "cyprus": "77",
    "france": "78",
    "papuanewguinea": "79",
    "mozambique": "80",
    "nepal": "81",
    "belgium": "82",
    "bulgaria": "83",
    "hungary": "84",
    "moldova": "85",
    "italy": "86",
    "paraguay": "87",
    "honduras": "88",
    "tunisia": "89",
    "nicaragua": "90",
    "timorleste": "91",
    "bolivia": "92",
    "costarica": "93",
    "guatemala": "94",
    "uae": "95",
    "zimbabwe": "96",
    "puertorico": "97",
    "sudan": "98",
    "togo": "99",
    "kuwait": "100",
    "salvador": "101",
    "libya": "102",
    "jamaica": "103",
    "trinidad": "104",
    "ecuador": "105",
    "swaziland": "106",
    "oman": "107",
    "bosnia": "108",
    "dominican": "109",
    "qatar": "111",
    "panama": "112",
    "mauritania": "114",
    "sierraleone": "115",
    "jordan": "116",
    "portugal": "117",
    "barbados": "118",
    "burkinafaso": "119",
    "lebanon": "120",
    "zambia": "121",
    "benin": "123",
    "reunion": "125",
    "rwanda": "128",
    "burundi": "130",
    "southkorea": "132",
    "japan": "133",
}

_SERVICE_NAMES = {code: name for name, code in SERVICE_CODES.items()}
_COUNTRY_NAMES: dict[str, str] = {}
for _name, _code in COUNTRY_CODES.items():
    _COUNTRY_NAMES.setdefault(_code, _name)

_BALANCE_RE = re.compile(r"ACCESS_BALANCE:([\d.]+)")
_NUMBER_RE = re.compile(r"ACCESS_NUMBER:(\d+):(\d+)")
_STATUS_OK_RE = re.compile(r"STATUS_OK:(.+)")


def map_service_code(product: Optional[str]) -> Optional[str]:
    if product is None:
        return None
    return SERVICE_CODES.get(product.lower(), product)


def map_country_code(country: Optional[str]) -> Optional[str]:
    if country is None:
        return None
    return COUNTRY_CODES.get(country.lower(), country)


def translate_error(body: str) -> Optional[EnvelopeError]:
    for token, message in ERROR_MESSAGES.items():
        if token in body:
            return EnvelopeError(message=message, code=token)
    return None


def _as_json(data: Any) -> Any:
    """Some actions return JSON with a text/html content type."""
    if isinstance(data, str):
        try:
            return json.loads(data)
        except ValueError:
            return data
    return data


class GrizzlySmsAdapter(BaseProviderAdapter):
    identifier = "grizzlysms"
    display_name = "GrizzlySMS"
    kind = ItemKind.PHONE_NUMBER

    def __init__(self, config: Optional[GrizzlySettings] = None, **kwargs: Any) -> None:
        super().__init__(config or provider_settings.grizzlysms, **kwargs)

    def _envelope(self, data: Any) -> Optional[EnvelopeError]:
        if isinstance(data, str):
            return translate_error(data)
        return super()._envelope(data)

    async def _action(self, action: str, **params: Any) -> Any:
        query = {"api_key": self.config.api_key, "action": action}
        query.update({k: v for k, v in params.items() if v is not None})
        result = await self.client.call("GET", "", query=query, caller=action)
        return _as_json(self._unwrap(result, action))

    async def get_balance(self) -> ProviderBalance:
        try:
            data = await self._action("getBalance")
        except (ProviderRejectedException, ProviderUnavailableException) as exc:
            return self._balance_failure(exc)
        if isinstance(data, (int, float)):
            balance = to_decimal(data)
        else:
            match = _BALANCE_RE.search(str(data))
            balance = to_decimal(match.group(1) if match else None)
        return ProviderBalance(provider=self.identifier, balance=balance, currency="USD")

    async def get_countries(self) -> list[Country]:
        data = await self._action("getCountries")
        if not isinstance(data, dict):
            return []
        countries = []
        for code, name in data.items():
            if isinstance(name, dict):
                name = name.get("eng") or name.get("name") or f"Country {code}"
            countries.append(Country(code=str(code), name=str(name), provider=self.identifier))
        return countries

    async def get_availability(self, selector: Selector) -> list[PriceQuote]:
        data = await self._action(
            "getPrices",
            country=map_country_code(selector.country),
            service=map_service_code(selector.product),
        )
        if not isinstance(data, dict):
            return []

        quotes: list[PriceQuote] = []
        for country_code, services in data.items():
            if not isinstance(services, dict):
                continue
            for service_code, info in services.items():
                if not isinstance(info, dict):
                    continue
                quotes.append(PriceQuote(
                    provider=self.identifier,
                    cost=to_decimal(info.get("cost", info.get("price"))),
                    currency="USD",
                    country=selector.country or _COUNTRY_NAMES.get(str(country_code), str(country_code)),
                    product=selector.product or _SERVICE_NAMES.get(service_code, service_code),
                    operator="any",
                    provider_item_id=f"{country_code}/{service_code}",
                    available_count=int(info.get("count") or 0),
                ))
        return quotes

    async def create_order(self, req: ProviderOrderRequest) -> ProviderOrder:
        country, service = map_country_code(req.country), map_service_code(req.product)
        # provider_item_id is "country_code/service_code"
        parts = req.provider_item_id.split("/")
        if len(parts) == 2:
            country = country or parts[0]
            service = service or parts[1]
        data = await self._action(
            "getNumberV2",
            service=service,
            country=country,
            operator=req.operator if req.operator and req.operator != "any" else None,
        )

        if isinstance(data, dict) and data.get("activationId"):
            order_id, phone, cost = str(data["activationId"]), data.get("phoneNumber"), data.get("activationCost")
        else:
            match = _NUMBER_RE.search(str(data))
            if match is None:
                raise ProviderRejectedException(
                    "Invalid response from provider",
                    provider=self.identifier,
                    provider_code="INVALID_RESPONSE",
                    details={"body": str(data)[:200]},
                )
            order_id, phone, cost = match.group(1), match.group(2), None

        self._log("provider_order_created", provider_order_id=order_id, reference=req.reference)
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=order_id,
            raw_status="STATUS_WAIT_CODE",
            status=self.map_status("STATUS_WAIT_CODE"),
            fulfillment={k: v for k, v in {"phone": phone, "country": req.country, "product": req.product}.items() if v},
            expires_at=utcnow() + ACTIVATION_TTL,
            cost=to_decimal(cost) if cost is not None else None,
        )

    async def query_order(self, provider_order_id: str) -> ProviderOrder:
        data = await self._action("getStatus", id=provider_order_id)
        fulfillment: dict[str, Any] = {}
        if isinstance(data, dict):
            raw_status = data.get("status") or "STATUS_WAIT_CODE"
            if data.get("sms"):
                fulfillment["sms"] = data["sms"]
        else:
            text = str(data).strip()
            match = _STATUS_OK_RE.match(text)
            if match:
                raw_status = "STATUS_OK"
                code = match.group(1).strip()
                fulfillment["code"] = code
                fulfillment["sms"] = [{"code": code, "text": f"Code: {code}"}]
            else:
                raw_status = text
        return ProviderOrder(
            provider=self.identifier,
            provider_order_id=provider_order_id,
            raw_status=raw_status,
            status=self.map_status(raw_status),
            fulfillment=fulfillment,
        )

    async def cancel_order(self, provider_order_id: str) -> None:
        await self._action("setStatus", id=provider_order_id, status=SET_STATUS_CANCEL)
        self._log("provider_order_cancelled", provider_order_id=provider_order_id)
