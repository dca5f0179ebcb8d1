import json
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from application.dtos.providers import ProviderOrderRequest, Selector
from application.ports.provider import FulfillmentProvider
from core.settings import FiveSimSettings, GrizzlySettings, JapSettings, RemoteRetry, ZenditSettings
from domain.catalog.entity import ItemKind
from domain.common.exceptions import ProviderRejectedException, ProviderUnavailableException
from domain.order.entity import OrderStatus
from infrastructure.external.providers import (
    PROVIDER_CLASSES,
    FiveSimAdapter,
    GrizzlySmsAdapter,
    JapAdapter,
    ZenditAdapter,
)
from infrastructure.external.providers.grizzly import map_country_code, map_service_code, translate_error
from infrastructure.external.providers.jap import extract_service_type
from infrastructure.external.providers.zendit import lpa_string, offer_price


NO_RETRY = RemoteRetry(attempts=1, backoff_base=0)


class Router:
    """MockTransport handler keyed by (method, path); records every request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        return handler(request) if callable(handler) else handler


def _adapter(cls, config, routes):
    router = Router(routes)
    return cls(config, retry=NO_RETRY, transport=httpx.MockTransport(router)), router


def test_every_registered_adapter_implements_the_port():
    identifiers = [cls.identifier for cls in PROVIDER_CLASSES]
    assert len(set(identifiers)) == len(identifiers)
    for cls in PROVIDER_CLASSES:
        adapter = cls(retry=NO_RETRY)
        assert isinstance(adapter, FulfillmentProvider)
        assert "get_balance" in vars(cls)


def test_adapter_is_disabled_without_credentials():
    assert not FiveSimAdapter(FiveSimSettings(enabled=True, api_key=""), retry=NO_RETRY).is_enabled()
    assert not FiveSimAdapter(FiveSimSettings(enabled=False, api_key="k"), retry=NO_RETRY).is_enabled()
    assert FiveSimAdapter(FiveSimSettings(enabled=True, api_key="k"), retry=NO_RETRY).is_enabled()


# 5sim


@pytest.mark.asyncio
async def test_fivesim_prices_flatten_nested_payload():
    prices = {
        "usa": {
            "whatsapp": {
                "virtual1": {"cost": 12.5, "count": 40, "rate": 91.2},
                "virtual2": {"cost": 10, "count": 0},
            }
        }
    }
    adapter, router = _adapter(
        FiveSimAdapter,
        FiveSimSettings(enabled=True, api_key="k"),
        {("GET", "/v1/guest/prices"): httpx.Response(200, json=prices)},
    )

    quotes = await adapter.get_availability(Selector(country="USA", product="WhatsApp"))

    assert [(q.operator, q.cost, q.available_count) for q in quotes] == [
        ("virtual1", Decimal("12.5"), 40),
        ("virtual2", Decimal("10"), 0),
    ]
    assert quotes[0].provider_item_id == "usa/virtual1/whatsapp"
    assert quotes[0].success_rate == 91.2
    assert parse_qs(router.requests[0].url.query.decode()) == {"country": ["usa"], "product": ["whatsapp"]}


@pytest.mark.asyncio
async def test_fivesim_create_and_unknown_status():
    order = {"id": 123, "phone": "+15550001", "status": "PENDING", "price": 12.5, "expires": "2026-01-01T10:20:00Z"}
    adapter, router = _adapter(
        FiveSimAdapter,
        FiveSimSettings(enabled=True, api_key="token"),
        {
            ("GET", "/v1/user/buy/activation/usa/any/whatsapp"): httpx.Response(200, json=order),
            ("GET", "/v1/user/check/123"): httpx.Response(200, json={**order, "status": "SOMETHING_ELSE"}),
        },
    )

    created = await adapter.create_order(ProviderOrderRequest(reference="SMS_1", provider_item_id="usa/any/whatsapp"))
    queried = await adapter.query_order("123")

    assert created.provider_order_id == "123"
    assert created.status == OrderStatus.PROCESSING
    assert created.fulfillment["phone"] == "+15550001"
    assert created.expires_at.tzinfo is not None
    assert router.requests[0].headers["Authorization"] == "Bearer token"
    assert queried.raw_status == "SOMETHING_ELSE"
    assert queried.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_fivesim_text_body_is_a_rejection():
    adapter, _ = _adapter(
        FiveSimAdapter,
        FiveSimSettings(enabled=True, api_key="k"),
        {("GET", "/v1/user/buy/activation/usa/any/whatsapp"): httpx.Response(200, text="no free phones")},
    )

    with pytest.raises(ProviderRejectedException) as exc_info:
        await adapter.create_order(ProviderOrderRequest(reference="SMS_1", provider_item_id="usa/any/whatsapp"))
    assert exc_info.value.provider_code == "NO_FREE_PHONES"


@pytest.mark.asyncio
async def test_balance_failure_is_reported_not_raised():
    adapter, _ = _adapter(
        FiveSimAdapter,
        FiveSimSettings(enabled=True, api_key="k"),
        {("GET", "/v1/user/profile"): httpx.Response(401, json={"message": "unauthorized"})},
    )

    balance = await adapter.get_balance()

    assert not balance.success
    assert balance.message == "unauthorized"


# GrizzlySMS


def test_grizzly_code_maps():
    assert map_service_code("WhatsApp") == "wa"
    assert map_service_code("unknown") == "unknown"
    assert map_country_code("nigeria") == "19"
    assert translate_error("NO_NUMBERS").message == "No numbers available for this service"
    assert translate_error("ACCESS_NUMBER:1:2") is None


@pytest.mark.asyncio
async def test_grizzly_text_tokens():
    def handler(request):
        action = request.url.params["action"]
        if action == "getNumberV2":
            return httpx.Response(200, text="ACCESS_NUMBER:555:2348012345678")
        if action == "getStatus":
            return httpx.Response(200, text="STATUS_OK:482913")
        if action == "getBalance":
            return httpx.Response(200, text="ACCESS_BALANCE:12.50")
        return httpx.Response(200, text="BAD_ACTION")

    adapter, router = _adapter(
        GrizzlySmsAdapter,
        GrizzlySettings(enabled=True, api_key="gk"),
        {("GET", "/stubs/handler_api.php"): handler},
    )

    created = await adapter.create_order(
        ProviderOrderRequest(reference="SMS_2", provider_item_id="19/wa", country="nigeria", product="whatsapp")
    )
    status = await adapter.query_order("555")
    balance = await adapter.get_balance()

    assert created.provider_order_id == "555"
    assert created.fulfillment["phone"] == "2348012345678"
    assert created.expires_at is not None
    assert status.raw_status == "STATUS_OK"
    assert status.fulfillment["code"] == "482913"
    assert balance.balance == Decimal("12.50")
    params = router.requests[0].url.params
    assert (params["api_key"], params["service"], params["country"]) == ("gk", "wa", "19")


@pytest.mark.asyncio
async def test_grizzly_error_token_is_translated():
    adapter, _ = _adapter(
        GrizzlySmsAdapter,
        GrizzlySettings(enabled=True, api_key="gk"),
        {("GET", "/stubs/handler_api.php"): httpx.Response(200, text="NO_NUMBERS")},
    )

    with pytest.raises(ProviderRejectedException) as exc_info:
        await adapter.create_order(ProviderOrderRequest(reference="SMS_3", provider_item_id="19/wa"))
    assert exc_info.value.message == "No numbers available for this service"
    assert exc_info.value.provider_code == "NO_NUMBERS"


@pytest.mark.asyncio
async def test_server_error_surfaces_as_unavailable():
    adapter, router = _adapter(
        GrizzlySmsAdapter,
        GrizzlySettings(enabled=True, api_key="gk"),
        {("GET", "/stubs/handler_api.php"): httpx.Response(502)},
    )

    with pytest.raises(ProviderUnavailableException):
        await adapter.get_availability(Selector(country="nigeria", product="whatsapp"))
    assert len(router.requests) == 1


# Zendit


def test_zendit_helpers():
    assert lpa_string("smdp.example.com", "ABC-123") == "LPA:1$smdp.example.com$ABC-123"
    assert lpa_string(None, "ABC") is None
    assert offer_price({"price": {"fixed": 1250, "currencyDivisor": 100, "currency": "USD"}}) == (Decimal("12.5"), "USD")
    assert offer_price({"price": 3, "priceCurrency": "EUR"}) == (Decimal("3"), "EUR")


@pytest.mark.asyncio
async def test_zendit_purchase_uses_reference_and_builds_lpa():
    purchase = {
        "status": "DONE",
        "confirmation": {"iccid": "8923", "smdpAddress": "smdp.example.com", "activationCode": "ABC-123"},
    }
    adapter, router = _adapter(
        ZenditAdapter,
        ZenditSettings(enabled=True, api_key="zk"),
        {
            ("POST", "/v1/esim/purchases"): httpx.Response(200, json={"status": "ACCEPTED"}),
            ("GET", "/v1/esim/purchases/ESIM_1"): httpx.Response(200, json=purchase),
            ("GET", "/v1/esim/purchases/ESIM_1/qrcode"): httpx.Response(200, json={"qrCode": "https://qr.example/1"}),
        },
    )

    created = await adapter.create_order(ProviderOrderRequest(reference="ESIM_1", provider_item_id="OFFER-NG"))
    queried = await adapter.query_order("ESIM_1")

    assert adapter.uses_reference_as_order_id
    assert json.loads(router.requests[0].content) == {"transactionId": "ESIM_1", "offerId": "OFFER-NG"}
    assert created.provider_order_id == "ESIM_1"
    assert created.status == OrderStatus.PENDING
    assert queried.status == OrderStatus.ACTIVE
    assert queried.fulfillment["qr_code_data"] == "LPA:1$smdp.example.com$ABC-123"
    assert queried.fulfillment["qr_code_url"] == "https://qr.example/1"
    assert queried.fulfillment["iccid"] == "8923"


@pytest.mark.asyncio
async def test_zendit_catalog_page():
    offers = {
        "total": 3,
        "list": [
            {"offerId": "A", "country": "ng", "brand": "Airalo", "dataGB": 1, "durationDays": 7, "price": 4.5},
            {"offerId": "B", "country": "gh", "dataUnlimited": True, "durationDays": 30, "price": 20},
        ],
    }
    adapter, router = _adapter(
        ZenditAdapter,
        ZenditSettings(enabled=True, api_key="zk"),
        {("GET", "/v1/esim/offers"): httpx.Response(200, json=offers)},
    )

    page = await adapter.list_catalog(limit=2, offset=0)

    assert page.total == 3
    assert [i.provider_item_id for i in page.items] == ["A", "B"]
    assert page.items[0].name == "Airalo NG 1GB 7 days"
    assert page.items[1].duration_days == 30
    assert router.requests[0].url.params["_limit"] == "2"


# JustAnotherPanel


def test_jap_service_type():
    assert extract_service_type("Instagram Followers [Real]") == "followers"
    assert extract_service_type("YouTube Views") == "views"
    assert extract_service_type("Website Traffic") == "other"


@pytest.mark.asyncio
async def test_jap_status_is_case_insensitive():
    adapter, router = _adapter(
        JapAdapter,
        JapSettings(enabled=True, api_key="jk"),
        {("POST", "/api/v2"): httpx.Response(200, json={"status": "In progress", "start_count": "10", "remains": "5"})},
    )

    order = await adapter.query_order("77")

    assert order.raw_status == "In progress"
    assert order.status == OrderStatus.PROCESSING
    assert order.fulfillment == {"start_count": 10, "remains": 5}
    assert parse_qs(router.requests[0].content.decode()) == {"key": ["jk"], "action": ["status"], "order": ["77"]}


@pytest.mark.asyncio
async def test_jap_cancel_error_is_rejected():
    adapter, _ = _adapter(
        JapAdapter,
        JapSettings(enabled=True, api_key="jk"),
        {("POST", "/api/v2"): httpx.Response(200, json=[{"order": 77, "cancel": {"error": "Incorrect order ID"}}])},
    )

    with pytest.raises(ProviderRejectedException, match="Incorrect order ID"):
        await adapter.cancel_order("77")


@pytest.mark.asyncio
async def test_jap_requires_target_and_error_envelope():
    adapter, router = _adapter(
        JapAdapter,
        JapSettings(enabled=True, api_key="jk"),
        {("POST", "/api/v2"): httpx.Response(200, json={"error": "Not enough funds on balance"})},
    )

    with pytest.raises(ProviderRejectedException):
        await adapter.create_order(ProviderOrderRequest(reference="SMM_1", provider_item_id="1", quantity=100))
    assert router.requests == []

    with pytest.raises(ProviderRejectedException, match="Not enough funds"):
        await adapter.create_order(
            ProviderOrderRequest(reference="SMM_1", provider_item_id="1", quantity=100, target="https://x.test/u")
        )


@pytest.mark.asyncio
async def test_jap_catalog_is_sliced_locally():
    services = [
        {"service": i, "name": f"Instagram Followers {i}", "rate": "0.90", "min": 100, "max": 10000, "category": "Instagram"}
        for i in range(5)
    ]
    adapter, _ = _adapter(
        JapAdapter,
        JapSettings(enabled=True, api_key="jk"),
        {("POST", "/api/v2"): httpx.Response(200, json=services)},
    )

    page = await adapter.list_catalog(limit=2, offset=4)

    assert page.total == 5
    assert [i.provider_item_id for i in page.items] == ["4"]
    assert page.items[0].quantity_unit == 1000
    assert page.items[0].product == "followers"
    assert adapter.kind == ItemKind.SMM
