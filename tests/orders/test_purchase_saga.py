from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from application.dtos.providers import ProviderOrder, Selector
from application.services.provider_registry import ProviderRegistry
from application.services.purchase_service import PurchaseService
from core.settings import FiveSimSettings, RemoteRetry
from domain.catalog.entity import ItemKind
from domain.common.clock import utcnow
from domain.common.exceptions import (
    CatalogItemNotFoundException,
    DomainValidationException,
    InconsistentStateException,
    InsufficientBalanceException,
    OrderNotCancellableException,
    OrderNotFoundException,
    ProviderNotAvailableException,
    ProviderRejectedException,
    ProviderUnavailableException,
)
from domain.order.entity import Order, OrderStatus, SagaState
from domain.referral.entity import Referral
from domain.referral.service import ReferralDomainService
from domain.wallet.entity import EntryDirection
from domain.wallet.service import WalletDomainService
from infrastructure.external.providers import FiveSimAdapter

from tests.conftest import StubProvider, create_item, create_wallet, get_balance, quote


def _service(uow_factory, *adapters, default=None):
    registry = ProviderRegistry(list(adapters), default_provider=default)
    return PurchaseService(uow_factory, registry)


async def _entries(uow_factory, user_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.ledger_repository.list_by_user(user_id)


async def _order(uow_factory, reference):
    async with uow_factory(readonly=True) as uow:
        return await uow.order_repository.get_by_reference(reference)


@pytest.mark.asyncio
async def test_successful_purchase_debits_exact_price_and_commits(uow_factory):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)
    service = _service(uow_factory, provider)

    order = await service.purchase(1, item.id)

    assert order.saga_state == SagaState.COMMITTED
    assert order.status == OrderStatus.PROCESSING
    assert order.provider_status == "PENDING"
    assert order.provider_order_id == "stub-1"
    assert order.fulfillment["phone"] == "+2348000000001"
    assert order.price == Decimal("3000.00")
    assert order.item_snapshot["selling_price"] == "3000.00"
    assert await get_balance(uow_factory, 1) == Decimal("2000.00")

    entries = await _entries(uow_factory, 1)
    assert len(entries) == 1
    debit = entries[0]
    assert debit.direction == EntryDirection.DEBIT
    assert debit.balance_before - debit.amount == debit.balance_after
    # the ledger reference doubles as the provider-facing transaction id
    assert provider.created[0].reference == debit.reference == order.reference


@pytest.mark.asyncio
async def test_provider_500_is_compensated_and_balance_restored(uow_factory):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(500, json={"message": "upstream exploded"})

    adapter = FiveSimAdapter(
        FiveSimSettings(enabled=True, api_key="key"),
        retry=RemoteRetry(attempts=3, backoff_base=0),
        transport=httpx.MockTransport(handler),
    )
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory, provider="5sim")
    service = _service(uow_factory, adapter)

    with pytest.raises(ProviderUnavailableException):
        await service.purchase(1, item.id)

    assert len(calls) == 3
    assert await get_balance(uow_factory, 1) == Decimal("5000.00")

    entries = await _entries(uow_factory, 1)
    assert [(e.direction, e.amount) for e in entries] == [
        (EntryDirection.DEBIT, Decimal("3000.00")),
        (EntryDirection.CREDIT, Decimal("3000.00")),
    ]
    assert entries[0].reference != entries[1].reference
    assert entries[1].order_reference == entries[0].reference

    order = await _order(uow_factory, entries[0].reference)
    assert order.status == OrderStatus.FAILED
    assert order.saga_state == SagaState.COMPENSATED

    async with uow_factory(readonly=True) as uow:
        assert not await uow.commission_repository.exists_for_transaction(entries[0].reference)
    await adapter.aclose()


@pytest.mark.asyncio
async def test_provider_rejection_is_compensated(uow_factory):
    provider = StubProvider()
    provider.create_error = ProviderRejectedException("No numbers available", provider="stub", provider_code="NO_NUMBERS")
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)

    with pytest.raises(ProviderRejectedException):
        await _service(uow_factory, provider).purchase(1, item.id)

    assert await get_balance(uow_factory, 1) == Decimal("5000.00")
    entries = await _entries(uow_factory, 1)
    order = await _order(uow_factory, entries[0].reference)
    assert order.failure_reason == "No numbers available"


@pytest.mark.asyncio
async def test_referred_purchase_pays_one_commission(uow_factory):
    await create_wallet(uow_factory, 1, "5000")
    await create_wallet(uow_factory, 2, "0")
    async with uow_factory() as uow:
        await uow.referral_repository.create(Referral(id=None, referrer_id=2, referee_id=1))
    item = await create_item(uow_factory)

    order = await _service(uow_factory, StubProvider()).purchase(1, item.id)

    async with uow_factory(readonly=True) as uow:
        commissions = await uow.commission_repository.list_by_referrer(2)
        referral = await uow.referral_repository.get_active_by_referee(1)
    assert len(commissions) == 1
    assert commissions[0].amount == Decimal("300.00")
    assert commissions[0].rate == Decimal("10")
    assert commissions[0].transaction_reference == order.reference
    assert referral.purchase_count == 1
    assert await get_balance(uow_factory, 2) == Decimal("300.00")


@pytest.mark.asyncio
async def test_commission_failure_does_not_undo_purchase(uow_factory, monkeypatch):
    await create_wallet(uow_factory, 1, "5000")
    await create_wallet(uow_factory, 2, "0")
    async with uow_factory() as uow:
        await uow.referral_repository.create(Referral(id=None, referrer_id=2, referee_id=1))
    item = await create_item(uow_factory)

    async def boom(self, entry):
        raise RuntimeError("referral store down")

    monkeypatch.setattr(ReferralDomainService, "process_commission", boom)

    order = await _service(uow_factory, StubProvider()).purchase(1, item.id)

    assert order.saga_state == SagaState.COMMITTED
    assert await get_balance(uow_factory, 1) == Decimal("2000.00")
    assert await get_balance(uow_factory, 2) == Decimal("0.00")


@pytest.mark.asyncio
async def test_quantity_above_max_is_rejected_without_ledger_entries(uow_factory):
    provider = StubProvider("jap", ItemKind.SMM)
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(
        uow_factory,
        kind=ItemKind.SMM,
        provider="jap",
        provider_item_id="1024",
        name="Instagram Followers",
        selling_price=Decimal("1000.00"),
        quantity_unit=1000,
        min_quantity=100,
        max_quantity=1000,
    )
    service = _service(uow_factory, provider)

    with pytest.raises(DomainValidationException):
        await service.purchase(1, item.id, item.max_quantity + 1, target="https://instagram.com/someone")

    assert await _entries(uow_factory, 1) == []
    assert provider.created == []
    assert await get_balance(uow_factory, 1) == Decimal("5000.00")


@pytest.mark.asyncio
async def test_quantity_priced_item_charges_per_unit(uow_factory):
    provider = StubProvider("jap", ItemKind.SMM)
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(
        uow_factory,
        kind=ItemKind.SMM,
        provider="jap",
        provider_item_id="1024",
        name="Instagram Followers",
        selling_price=Decimal("1000.00"),
        quantity_unit=1000,
        min_quantity=100,
        max_quantity=1000,
    )

    order = await _service(uow_factory, provider).purchase(1, item.id, 250, target="https://instagram.com/someone")

    assert order.price == Decimal("250.00")
    assert provider.created[0].quantity == 250
    assert provider.created[0].target == "https://instagram.com/someone"
    assert await get_balance(uow_factory, 1) == Decimal("4750.00")


@pytest.mark.asyncio
async def test_insufficient_balance_fails_before_debit(uow_factory):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "2999.99")
    item = await create_item(uow_factory)

    with pytest.raises(InsufficientBalanceException):
        await _service(uow_factory, provider).purchase(1, item.id)

    assert await _entries(uow_factory, 1) == []
    assert provider.created == []


@pytest.mark.asyncio
async def test_debit_rechecks_balance_spent_after_validation(uow_factory, monkeypatch):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "3000")
    item = await create_item(uow_factory)
    reserve = PurchaseService._reserve_order

    async def spent_meanwhile(self, user_id, *args):
        # another purchase debits the wallet after this one passed validation
        async with uow_factory() as uow:
            await WalletDomainService(uow.wallet_repository, uow.ledger_repository).debit(
                user_id, Decimal("3000"), reference="SMS_OTHER",
            )
        return await reserve(self, user_id, *args)

    monkeypatch.setattr(PurchaseService, "_reserve_order", spent_meanwhile)

    with pytest.raises(InsufficientBalanceException):
        await _service(uow_factory, provider).purchase(1, item.id)

    assert await get_balance(uow_factory, 1) == Decimal("0.00")
    entries = await _entries(uow_factory, 1)
    assert [(e.direction, e.reference) for e in entries] == [(EntryDirection.DEBIT, "SMS_OTHER")]
    async with uow_factory(readonly=True) as uow:
        assert await uow.order_repository.list_by_user(1) == []
    assert provider.created == []


@pytest.mark.asyncio
async def test_inactive_and_unknown_items_are_rejected(uow_factory):
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory, is_active=False)
    service = _service(uow_factory, StubProvider())

    with pytest.raises(DomainValidationException):
        await service.purchase(1, item.id)
    with pytest.raises(CatalogItemNotFoundException):
        await service.purchase(1, 9999)
    assert await _entries(uow_factory, 1) == []


@pytest.mark.asyncio
async def test_disabled_provider_is_rejected_before_debit(uow_factory):
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)

    with pytest.raises(ProviderNotAvailableException):
        await _service(uow_factory, StubProvider(enabled=False)).purchase(1, item.id)
    assert await _entries(uow_factory, 1) == []


@pytest.mark.asyncio
async def test_every_attempt_gets_a_new_reference(uow_factory):
    await create_wallet(uow_factory, 1, "10000")
    item = await create_item(uow_factory)
    service = _service(uow_factory, StubProvider())

    first = await service.purchase(1, item.id)
    second = await service.purchase(1, item.id)

    assert first.reference != second.reference
    entries = await _entries(uow_factory, 1)
    assert len({e.reference for e in entries}) == len(entries) == 2
    assert await get_balance(uow_factory, 1) == Decimal("4000.00")


@pytest.mark.asyncio
async def test_failed_compensation_raises_inconsistent_state(uow_factory, monkeypatch):
    provider = StubProvider()
    provider.create_error = ProviderUnavailableException("timeout", provider="stub")
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)

    async def broken_credit(self, *args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(WalletDomainService, "credit", broken_credit)

    with pytest.raises(InconsistentStateException) as exc_info:
        await _service(uow_factory, provider).purchase(1, item.id)

    reference = exc_info.value.reference
    order = await _order(uow_factory, reference)
    assert order.saga_state == SagaState.COMPENSATION_FAILED
    assert await get_balance(uow_factory, 1) == Decimal("2000.00")


class RecordingScheduler:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def refresh_order_status(self, order_id, countdown=None):
        if self.fail:
            raise ConnectionError("broker down")
        self.calls.append((order_id, countdown))


@pytest.mark.asyncio
async def test_pending_order_schedules_status_refresh(uow_factory):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)
    scheduler = RecordingScheduler()
    service = PurchaseService(uow_factory, ProviderRegistry([provider]), scheduler=scheduler, refresh_after=20)

    order = await service.purchase(1, item.id)

    assert scheduler.calls == [(order.id, 20)]


@pytest.mark.asyncio
async def test_scheduler_failure_does_not_fail_purchase(uow_factory):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)
    service = PurchaseService(uow_factory, ProviderRegistry([provider]), scheduler=RecordingScheduler(fail=True))

    order = await service.purchase(1, item.id)

    assert order.saga_state == SagaState.COMMITTED


@pytest.mark.asyncio
async def test_completed_order_is_not_rescheduled(uow_factory):
    provider = StubProvider()
    provider.next_order = ProviderOrder(
        provider="stub", provider_order_id="stub-done", raw_status="FINISHED", status=OrderStatus.COMPLETED
    )
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)
    scheduler = RecordingScheduler()

    await PurchaseService(uow_factory, ProviderRegistry([provider]), scheduler=scheduler).purchase(1, item.id)

    assert scheduler.calls == []


@pytest.mark.asyncio
async def test_purchase_best_uses_selected_provider_item(uow_factory):
    cheap = StubProvider("cheap", quotes=[quote("cheap", "1.00", count=3)])
    empty = StubProvider("empty", quotes=[quote("empty", "0.50", count=0)])
    await create_wallet(uow_factory, 1, "5000")
    await create_item(uow_factory, provider="empty", selling_price=Decimal("750.00"))
    target = await create_item(uow_factory, provider="cheap", selling_price=Decimal("1500.00"))

    order = await _service(uow_factory, empty, cheap).purchase_best(
        1, Selector(country="usa", product="whatsapp"), policy="cheapest"
    )

    assert order.provider == "cheap"
    assert order.catalog_item_id == target.id
    assert empty.created == []


@pytest.mark.asyncio
async def test_purchase_best_without_stock_raises(uow_factory):
    provider = StubProvider(quotes=[quote("stub", "1.00", count=0)])
    await create_wallet(uow_factory, 1, "5000")

    with pytest.raises(ProviderNotAvailableException):
        await _service(uow_factory, provider).purchase_best(1, Selector(country="usa", product="whatsapp"))


# Cancel / refund


@pytest.mark.asyncio
async def test_cancel_refunds_after_provider_success(uow_factory):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)
    service = _service(uow_factory, provider)
    order = await service.purchase(1, item.id)

    result = await service.cancel(1, order.id)

    assert provider.cancelled == [order.provider_order_id]
    assert result.status == OrderStatus.CANCELLED
    assert result.amount == Decimal("3000.00")
    assert result.balance_after == Decimal("5000.00")
    assert await get_balance(uow_factory, 1) == Decimal("5000.00")
    stored = await _order(uow_factory, order.reference)
    assert stored.status == OrderStatus.CANCELLED
    assert stored.cancelled_at is not None


@pytest.mark.asyncio
async def test_failed_provider_cancel_leaves_wallet_and_order_untouched(uow_factory):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)
    service = _service(uow_factory, provider)
    order = await service.purchase(1, item.id)
    provider.cancel_error = ProviderRejectedException("SMS already received", provider="stub")

    with pytest.raises(ProviderRejectedException):
        await service.cancel(1, order.id)

    assert await get_balance(uow_factory, 1) == Decimal("2000.00")
    stored = await _order(uow_factory, order.reference)
    assert stored.status == OrderStatus.PROCESSING
    assert len(await _entries(uow_factory, 1)) == 1


@pytest.mark.asyncio
async def test_cancel_rejects_consumed_or_foreign_orders(uow_factory):
    provider = StubProvider()
    await create_wallet(uow_factory, 1, "5000")
    item = await create_item(uow_factory)
    service = _service(uow_factory, provider)
    order = await service.purchase(1, item.id)

    async with uow_factory() as uow:
        stored = await uow.order_repository.get_by_id(order.id)
        stored.status = OrderStatus.COMPLETED
        await uow.order_repository.update(stored)

    with pytest.raises(OrderNotCancellableException):
        await service.cancel(1, order.id)
    with pytest.raises(OrderNotFoundException):
        await service.cancel(2, order.id)
    assert provider.cancelled == []


@pytest.mark.asyncio
async def test_esim_cancel_marks_refunded(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    await create_wallet(uow_factory, 1, "50000")
    item = await create_item(
        uow_factory,
        kind=ItemKind.ESIM,
        provider="zendit",
        provider_item_id="ESIM-NG-1GB",
        name="Nigeria 1GB 7 days",
        selling_price=Decimal("12000.00"),
        country="NG",
        product="esim",
        duration_days=7,
    )
    service = _service(uow_factory, provider)
    order = await service.purchase(1, item.id)

    result = await service.cancel(1, order.id)

    assert provider.cancelled == [order.reference]
    assert result.status == OrderStatus.REFUNDED


# Top-up


async def _esim_setup(uow_factory, provider):
    await create_wallet(uow_factory, 1, "100000")
    parent_item = await create_item(
        uow_factory,
        kind=ItemKind.ESIM,
        provider="zendit",
        provider_item_id="ESIM-NG-1GB",
        name="Nigeria 1GB 7 days",
        selling_price=Decimal("12000.00"),
        country="NG",
        product="esim",
        duration_days=7,
    )
    top_up_item = await create_item(
        uow_factory,
        kind=ItemKind.ESIM,
        provider="zendit",
        provider_item_id="ESIM-NG-5GB",
        name="Nigeria 5GB 30 days",
        selling_price=Decimal("30000.00"),
        country="NG",
        product="esim",
        duration_days=30,
    )
    service = _service(uow_factory, provider)
    provider.next_order = ProviderOrder(
        provider="zendit",
        provider_order_id="parent-tx",
        raw_status="DONE",
        status=OrderStatus.ACTIVE,
        expires_at=utcnow() + timedelta(days=7),
    )
    parent = await service.purchase(1, parent_item.id)
    provider.next_order = None
    return service, parent, top_up_item


@pytest.mark.asyncio
async def test_top_up_creates_subscription_and_extends_expiry(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    service, parent, item = await _esim_setup(uow_factory, provider)

    subscription = await service.top_up(1, parent.id, item.id)

    assert subscription.saga_state == SagaState.COMMITTED
    assert subscription.order_id == parent.id
    assert subscription.duration_days == 30
    async with uow_factory(readonly=True) as uow:
        refreshed = await uow.order_repository.get_by_id(parent.id)
        subscriptions = await uow.subscription_repository.list_by_order(parent.id)
    assert len(subscriptions) == 1
    assert refreshed.expires_at == subscription.expires_at
    assert refreshed.expires_at > parent.expires_at
    assert await get_balance(uow_factory, 1) == Decimal("58000.00")


@pytest.mark.asyncio
async def test_top_up_never_shortens_expiry(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    service, parent, item = await _esim_setup(uow_factory, provider)
    far_future = utcnow() + timedelta(days=365)
    async with uow_factory() as uow:
        stored = await uow.order_repository.get_by_id(parent.id)
        stored.expires_at = far_future
        await uow.order_repository.update(stored)

    await service.top_up(1, parent.id, item.id)

    async with uow_factory(readonly=True) as uow:
        refreshed = await uow.order_repository.get_by_id(parent.id)
    assert abs((refreshed.expires_at - far_future).total_seconds()) < 1


@pytest.mark.asyncio
async def test_failed_top_up_is_compensated(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    service, parent, item = await _esim_setup(uow_factory, provider)
    provider.create_error = ProviderRejectedException("Offer unavailable", provider="zendit")

    with pytest.raises(ProviderRejectedException):
        await service.top_up(1, parent.id, item.id)

    assert await get_balance(uow_factory, 1) == Decimal("88000.00")
    async with uow_factory(readonly=True) as uow:
        subscriptions = await uow.subscription_repository.list_by_order(parent.id)
        refreshed = await uow.order_repository.get_by_id(parent.id)
    assert subscriptions[0].saga_state == SagaState.COMPENSATED
    assert refreshed.expires_at == parent.expires_at


@pytest.mark.asyncio
async def test_top_up_requires_matching_esim_package(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    service, parent, _ = await _esim_setup(uow_factory, provider)
    other_country = await create_item(
        uow_factory,
        kind=ItemKind.ESIM,
        provider="zendit",
        provider_item_id="ESIM-GH-1GB",
        name="Ghana 1GB",
        selling_price=Decimal("9000.00"),
        country="GH",
        product="esim",
        duration_days=7,
    )

    with pytest.raises(DomainValidationException):
        await service.top_up(1, parent.id, other_country.id)


# Stale saga recovery


async def _reserved_order(uow_factory, provider_id, reference, created_ago):
    created = utcnow() - created_ago
    async with uow_factory() as uow:
        await uow.wallet_repository.debit(1, Decimal("3000.00"))
        return await uow.order_repository.create(Order(
            id=None,
            user_id=1,
            kind=ItemKind.ESIM,
            provider=provider_id,
            catalog_item_id=None,
            reference=reference,
            price=Decimal("3000.00"),
            created_at=created,
            updated_at=created,
        ))


@pytest.mark.asyncio
async def test_recover_stale_commits_found_and_compensates_rejected(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    await create_wallet(uow_factory, 1, "10000")
    found = await _reserved_order(uow_factory, "zendit", "ESIM_FOUND", timedelta(hours=1))
    await _reserved_order(uow_factory, "zendit", "ESIM_FRESH", timedelta(seconds=5))
    service = _service(uow_factory, provider)

    provider.query_result = ProviderOrder(
        provider="zendit", provider_order_id="ESIM_FOUND", raw_status="DONE", status=OrderStatus.ACTIVE
    )
    summary = await service.recover_stale(timedelta(minutes=10))

    assert summary["committed"] == 1
    assert provider.queried == ["ESIM_FOUND"]
    committed = await _order(uow_factory, found.reference)
    assert committed.saga_state == SagaState.COMMITTED
    assert committed.status == OrderStatus.ACTIVE
    assert (await _order(uow_factory, "ESIM_FRESH")).saga_state == SagaState.RESERVED

    lost = await _reserved_order(uow_factory, "zendit", "ESIM_LOST", timedelta(hours=1))
    provider.query_result = None
    provider.query_error = ProviderRejectedException("Purchase not found", provider="zendit")
    summary = await service.recover_stale(timedelta(minutes=10))

    assert summary["compensated"] == 1
    assert (await _order(uow_factory, lost.reference)).saga_state == SagaState.COMPENSATED
    assert await get_balance(uow_factory, 1) == Decimal("4000.00")


@pytest.mark.asyncio
async def test_recover_stale_flags_providers_without_reference_lookup(uow_factory):
    provider = StubProvider("5sim")
    await create_wallet(uow_factory, 1, "10000")
    order = await _reserved_order(uow_factory, "5sim", "SMS_UNKNOWN", timedelta(hours=1))

    summary = await _service(uow_factory, provider).recover_stale(timedelta(minutes=10))

    assert summary["flagged"] == 1
    assert provider.queried == []
    assert (await _order(uow_factory, order.reference)).saga_state == SagaState.RESERVED


@pytest.mark.asyncio
async def test_recover_stale_skips_unreachable_provider(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    provider.query_error = ProviderUnavailableException("timeout", provider="zendit")
    await create_wallet(uow_factory, 1, "10000")
    order = await _reserved_order(uow_factory, "zendit", "ESIM_LATER", timedelta(hours=1))

    summary = await _service(uow_factory, provider).recover_stale(timedelta(minutes=10))

    assert summary["skipped"] == 1
    assert (await _order(uow_factory, order.reference)).saga_state == SagaState.RESERVED
    assert await get_balance(uow_factory, 1) == Decimal("7000.00")


@pytest.mark.asyncio
async def test_live_compensation_after_stale_sweep_does_not_refund_twice(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    provider.query_error = ProviderRejectedException("Purchase not found", provider="zendit")
    await create_wallet(uow_factory, 1, "10000")
    order = await _reserved_order(uow_factory, "zendit", "ESIM_SLOW", timedelta(hours=1))
    service = _service(uow_factory, provider)

    assert (await service.recover_stale(timedelta(minutes=10)))["compensated"] == 1
    # the slow live request still holds its reserved copy and now fails too
    assert not await service._compensate(order, "order_repository", reason="timeout")

    assert await get_balance(uow_factory, 1) == Decimal("10000.00")
    credits = [e for e in await _entries(uow_factory, 1) if e.direction == EntryDirection.CREDIT]
    assert len(credits) == 1
    assert (await _order(uow_factory, order.reference)).saga_state == SagaState.COMPENSATED


@pytest.mark.asyncio
async def test_second_commit_of_a_settled_saga_is_a_no_op(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    await create_wallet(uow_factory, 1, "10000")
    order = await _reserved_order(uow_factory, "zendit", "ESIM_TWICE", timedelta(hours=1))
    provider.query_result = ProviderOrder(
        provider="zendit", provider_order_id="ESIM_TWICE", raw_status="DONE", status=OrderStatus.ACTIVE
    )
    service = _service(uow_factory, provider)

    assert (await service.recover_stale(timedelta(minutes=10)))["committed"] == 1
    late = ProviderOrder(
        provider="zendit", provider_order_id="ESIM_TWICE", raw_status="PENDING", status=OrderStatus.PENDING
    )
    committed = await service._commit_order(order, late)

    assert committed.saga_state == SagaState.COMMITTED
    assert committed.status == OrderStatus.ACTIVE
    assert await get_balance(uow_factory, 1) == Decimal("7000.00")


@pytest.mark.asyncio
async def test_commit_after_compensation_is_flagged(uow_factory):
    provider = StubProvider("zendit", ItemKind.ESIM, uses_reference_as_order_id=True)
    provider.query_error = ProviderRejectedException("Purchase not found", provider="zendit")
    await create_wallet(uow_factory, 1, "10000")
    order = await _reserved_order(uow_factory, "zendit", "ESIM_LATE", timedelta(hours=1))
    service = _service(uow_factory, provider)
    await service.recover_stale(timedelta(minutes=10))

    late = ProviderOrder(
        provider="zendit", provider_order_id="ESIM_LATE", raw_status="DONE", status=OrderStatus.ACTIVE
    )
    with pytest.raises(InconsistentStateException):
        await service._commit_order(order, late)

    stored = await _order(uow_factory, order.reference)
    assert stored.saga_state == SagaState.COMPENSATED
    assert await get_balance(uow_factory, 1) == Decimal("10000.00")
