"""
Purchase orchestrator: the debit → remote order → commit-or-compensate saga.

Each step that touches local state runs in its own unit of work so the saga
state (reserved / committed / compensated) is durable between steps. The remote
call sits between two transactions and is the only step that can leave a
purchase half-applied; the explicit compensating credit exists for that
reason, and the stale sweep (`recover_stale`) finishes sagas interrupted by a
crash.
"""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, List, Optional

from application.dtos.providers import ProviderOrder, ProviderOrderRequest, RefundResult, Selector
from application.ports.provider import FulfillmentProvider
from application.ports.scheduler import TaskScheduler
from application.services.provider_registry import ProviderRegistry, SelectionPolicy
from core.logging_config import bind_purchase_context, get_logger
from domain.catalog.entity import CatalogItem, ItemKind
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
    WalletNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import CANCELLABLE_STATUSES, Order, OrderStatus, SagaState, Subscription
from domain.order.events import (
    CompensationFailed,
    OrderCancelled,
    OrderCommitted,
    OrderCompensated,
    SubscriptionCommitted,
)
from domain.referral.entity import CommissionPolicy, ReferralCommission
from domain.referral.service import ReferralDomainService
from domain.wallet.entity import LedgerEntry, new_reference
from domain.wallet.service import WalletDomainService


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]

REFERENCE_PREFIX = {
    ItemKind.PHONE_NUMBER: "SMS",
    ItemKind.ESIM: "ESIM",
    ItemKind.SMM: "SMM",
}
TOP_UP_PREFIX = "TOPUP"

_ORDERS = "order_repository"
_SUBSCRIPTIONS = "subscription_repository"


class PurchaseService:
    """
    购买编排服务

    职责：
    1. 校验条目、数量与余额（无副作用）
    2. 扣款并持久化 reserved 订单
    3. 调用提供商下单，成功则提交，失败则补偿退款
    4. 提交后处理推荐佣金
    5. 取消退款、eSIM 充值、滞留 saga 恢复
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        registry: ProviderRegistry,
        *,
        commission_policy: Optional[CommissionPolicy] = None,
        selection_policy: SelectionPolicy | str = SelectionPolicy.CHEAPEST,
        scheduler: Optional[TaskScheduler] = None,
        refresh_after: int = 15,
    ) -> None:
        self._uow_factory = uow_factory
        self._registry = registry
        self._commission_policy = commission_policy or CommissionPolicy()
        self._selection_policy = selection_policy
        self._scheduler = scheduler
        self._refresh_after = refresh_after
        self.events: List = []

    # Purchase

    async def purchase(
        self,
        user_id: int,
        item_id: int,
        quantity: int = 1,
        *,
        target: Optional[str] = None,
    ) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            item = await uow.catalog_repository.get_by_id(item_id)
            if item is None:
                raise CatalogItemNotFoundException(item_id)
            item.ensure_purchasable(quantity)
            if item.kind == ItemKind.SMM and not target:
                raise DomainValidationException(
                    "A target link is required for this service",
                    field="target",
                    message_key="order.target.required",
                )
            price = item.total_price(quantity)
            await self._ensure_balance(uow, user_id, price)

        adapter = self._enabled_adapter(item.provider)
        reference = new_reference(REFERENCE_PREFIX[item.kind])

        with bind_purchase_context(user_id=user_id, reference=reference, provider=item.provider):
            order, debit = await self._reserve_order(user_id, item, quantity, price, reference, target)

            request = ProviderOrderRequest(
                reference=reference,
                provider_item_id=item.provider_item_id,
                quantity=quantity,
                country=item.country,
                product=item.product,
                operator=item.operator,
                target=target,
            )
            try:
                provider_order = await adapter.create_order(request)
            except Exception as exc:
                logger.warning(
                    "purchase_remote_failed",
                    order_id=order.id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                await self._compensate(order, _ORDERS, reason=_reason(exc))
                raise

            order = await self._commit_order(order, provider_order)
            await self._process_commission(debit)
            self._schedule_refresh(order)
            return order

    async def purchase_best(
        self,
        user_id: int,
        selector: Selector,
        quantity: int = 1,
        *,
        policy: SelectionPolicy | str | None = None,
        target: Optional[str] = None,
    ) -> Order:
        """Select a provider under the policy, then buy its catalog item for the selector."""
        adapter = await self._registry.select_best_provider(selector, policy or self._selection_policy)
        if adapter is None:
            raise ProviderNotAvailableException(reason="No provider has stock for this selection")
        async with self._uow_factory(readonly=True) as uow:
            item = await uow.catalog_repository.find_for_selector(
                adapter.identifier, selector.kind, selector.country, selector.product
            )
        if item is None:
            raise CatalogItemNotFoundException(provider=adapter.identifier)
        return await self.purchase(user_id, item.id, quantity, target=target)

    # Top-up

    async def top_up(self, user_id: int, order_id: int, item_id: int) -> Subscription:
        now = utcnow()
        async with self._uow_factory(readonly=True) as uow:
            parent = await self._owned_order(uow, user_id, order_id)
            if not parent.can_top_up(now):
                raise DomainValidationException(
                    f"Order in status {parent.status.value} cannot be topped up",
                    field="order_id",
                    message_key="order.top_up.not_eligible",
                )
            item = await uow.catalog_repository.get_by_id(item_id)
            if item is None:
                raise CatalogItemNotFoundException(item_id)
            item.ensure_purchasable(1)
            parent_country = parent.item_snapshot.get("country")
            if item.kind != ItemKind.ESIM or item.provider != parent.provider or (
                parent_country and item.country != parent_country
            ):
                raise DomainValidationException(
                    "Top-up package must be an eSIM package of the same provider and country",
                    field="item_id",
                    message_key="order.top_up.package_mismatch",
                )
            price = item.total_price(1)
            await self._ensure_balance(uow, user_id, price)

        adapter = self._enabled_adapter(item.provider)
        reference = new_reference(TOP_UP_PREFIX)

        with bind_purchase_context(user_id=user_id, reference=reference, provider=item.provider, order_id=order_id):
            async with self._uow_factory() as uow:
                debit = await self._wallet(uow).debit(
                    user_id,
                    price,
                    reference=reference,
                    order_reference=reference,
                    description=f"Top-up: {item.name}",
                )
                subscription = await uow.subscription_repository.create(
                    Subscription(
                        id=None,
                        order_id=parent.id,
                        user_id=user_id,
                        provider=item.provider,
                        catalog_item_id=item.id,
                        reference=reference,
                        price=price,
                        duration_days=item.duration_days,
                        item_snapshot=item.snapshot(),
                        created_at=now,
                        updated_at=now,
                    )
                )
            logger.info("top_up_debit_reserved", subscription_id=subscription.id, amount=str(price))

            request = ProviderOrderRequest(
                reference=reference,
                provider_item_id=item.provider_item_id,
                country=item.country,
                product=item.product,
            )
            try:
                provider_order = await adapter.create_order(request)
            except Exception as exc:
                logger.warning("top_up_remote_failed", subscription_id=subscription.id, error=str(exc))
                await self._compensate(subscription, _SUBSCRIPTIONS, reason=_reason(exc))
                raise

            subscription = await self._commit_subscription(subscription, provider_order)
            await self._process_commission(debit)
            return subscription

    # Cancel / refund

    async def cancel(self, user_id: int, order_id: int) -> RefundResult:
        async with self._uow_factory(readonly=True) as uow:
            order = await self._owned_order(uow, user_id, order_id)
        if not order.can_cancel() or not order.provider_order_id:
            raise OrderNotCancellableException(order.id, order.status.value)

        adapter = self._registry.get(order.provider)
        with bind_purchase_context(user_id=user_id, reference=order.reference, provider=order.provider):
            # Provider first: a failed upstream cancel leaves wallet and order untouched.
            await adapter.cancel_order(order.provider_order_id)

            async with self._uow_factory() as uow:
                order.mark_cancelled(refunded=order.kind == ItemKind.ESIM)
                claimed = await uow.order_repository.compare_and_update(order, expected=CANCELLABLE_STATUSES)
                if not claimed:
                    raise OrderNotCancellableException(order.id, "changed concurrently")
                credit = await self._wallet(uow).credit(
                    user_id,
                    order.price,
                    reference=new_reference("REFUND"),
                    order_reference=order.reference,
                    description=f"Refund for order {order.reference}",
                )

            logger.info("order_cancelled", order_id=order.id, refund_reference=credit.reference, amount=str(order.price))
            self.events.append(OrderCancelled(
                reference=order.reference,
                user_id=user_id,
                provider=order.provider,
                order_id=order.id,
                refund_reference=credit.reference,
                amount=str(order.price),
            ))
            return RefundResult(
                order_id=order.id,
                reference=credit.reference,
                amount=credit.amount,
                balance_after=credit.balance_after,
                status=order.status,
            )

    # Recovery sweep

    async def recover_stale(self, older_than: timedelta) -> dict[str, int]:
        """Finish sagas left in `reserved` longer than `older_than`."""
        cutoff = utcnow() - older_than
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_stale_reserved(cutoff)
            subscriptions = await uow.subscription_repository.list_stale_reserved(cutoff)

        summary = {"committed": 0, "compensated": 0, "flagged": 0, "skipped": 0}
        for record, repo in [(o, _ORDERS) for o in orders] + [(s, _SUBSCRIPTIONS) for s in subscriptions]:
            outcome = await self._recover_one(record, repo)
            summary[outcome] += 1
        logger.info("stale_sagas_recovered", **summary)
        return summary

    async def _recover_one(self, record: Any, repo: str) -> str:
        with bind_purchase_context(user_id=record.user_id, reference=record.reference, provider=record.provider):
            adapter: Optional[FulfillmentProvider] = None
            try:
                adapter = self._registry.get(record.provider)
            except ProviderNotAvailableException:
                pass
            if adapter is None or not adapter.uses_reference_as_order_id:
                logger.critical("manual_reconciliation_required", record_id=record.id, record_type=repo)
                return "flagged"

            try:
                provider_order = await adapter.query_order(record.reference)
            except ProviderUnavailableException as exc:
                logger.warning("stale_saga_provider_unavailable", record_id=record.id, error=exc.message)
                return "skipped"
            except ProviderRejectedException as exc:
                # Upstream never accepted the order: give the money back.
                settled = await self._compensate(record, repo, reason=exc.message)
                return "compensated" if settled else "skipped"

            if provider_order.status == OrderStatus.FAILED:
                settled = await self._compensate(record, repo, reason=f"provider status {provider_order.raw_status}")
                return "compensated" if settled else "skipped"

            if repo == _ORDERS:
                await self._commit_order(record, provider_order)
            else:
                await self._commit_subscription(record, provider_order)
            async with self._uow_factory(readonly=True) as uow:
                debit = await uow.ledger_repository.get_by_reference(record.reference)
            if debit is not None:
                await self._process_commission(debit)
            return "committed"

    # Saga steps

    async def _reserve_order(
        self,
        user_id: int,
        item: CatalogItem,
        quantity: int,
        price: Decimal,
        reference: str,
        target: Optional[str],
    ) -> tuple[Order, LedgerEntry]:
        now = utcnow()
        async with self._uow_factory() as uow:
            # Balance is re-checked atomically here; the earlier check only fails fast.
            debit = await self._wallet(uow).debit(
                user_id,
                price,
                reference=reference,
                order_reference=reference,
                description=f"Purchase: {item.name}",
            )
            order = await uow.order_repository.create(
                Order(
                    id=None,
                    user_id=user_id,
                    kind=item.kind,
                    provider=item.provider,
                    catalog_item_id=item.id,
                    reference=reference,
                    price=price,
                    quantity=quantity,
                    status=OrderStatus.PENDING,
                    saga_state=SagaState.RESERVED,
                    target=target,
                    item_snapshot=item.snapshot(),
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info(
            "purchase_debit_reserved",
            order_id=order.id,
            amount=str(price),
            balance_after=str(debit.balance_after),
        )
        return order, debit

    async def _commit_order(self, order: Order, provider_order: ProviderOrder) -> Order:
        try:
            async with self._uow_factory() as uow:
                order.mark_committed(
                    provider_order_id=provider_order.provider_order_id,
                    provider_status=provider_order.raw_status,
                    status=provider_order.status,
                    fulfillment=provider_order.fulfillment,
                    expires_at=provider_order.expires_at,
                )
                claimed = await uow.order_repository.update_if_reserved(order)
                stored = await uow.order_repository.get_by_id(order.id)
        except Exception as exc:
            logger.critical(
                "purchase_commit_failed",
                order_id=order.id,
                provider_order_id=provider_order.provider_order_id,
                error=str(exc),
            )
            raise InconsistentStateException(
                "Provider order was placed but could not be recorded",
                reference=order.reference,
                details={"provider_order_id": provider_order.provider_order_id},
            ) from exc

        if not claimed:
            return self._already_settled(stored, provider_order)

        order = stored
        logger.info(
            "purchase_committed",
            order_id=order.id,
            provider_order_id=order.provider_order_id,
            status=order.status.value,
            provider_status=order.provider_status,
        )
        self.events.append(OrderCommitted(
            reference=order.reference,
            user_id=order.user_id,
            provider=order.provider,
            order_id=order.id,
            amount=str(order.price),
        ))
        return order

    async def _commit_subscription(self, subscription: Subscription, provider_order: ProviderOrder) -> Subscription:
        now = utcnow()
        expires_at = now + timedelta(days=subscription.duration_days) if subscription.duration_days else None
        try:
            async with self._uow_factory() as uow:
                subscription.mark_committed(
                    provider_order_id=provider_order.provider_order_id,
                    provider_status=provider_order.raw_status,
                    status=provider_order.status,
                    starts_at=now,
                    expires_at=expires_at,
                )
                claimed = await uow.subscription_repository.update_if_reserved(subscription)
                if claimed:
                    parent = await uow.order_repository.get_by_id(subscription.order_id)
                    if parent is not None and expires_at is not None and parent.extend_expiry(expires_at):
                        await uow.order_repository.update(parent)
                stored = await uow.subscription_repository.get_by_id(subscription.id)
        except Exception as exc:
            logger.critical(
                "top_up_commit_failed",
                subscription_id=subscription.id,
                provider_order_id=provider_order.provider_order_id,
                error=str(exc),
            )
            raise InconsistentStateException(
                "Provider top-up was placed but could not be recorded",
                reference=subscription.reference,
                details={"provider_order_id": provider_order.provider_order_id},
            ) from exc

        if not claimed:
            return self._already_settled(stored, provider_order)

        subscription = stored
        logger.info(
            "top_up_committed",
            subscription_id=subscription.id,
            order_id=subscription.order_id,
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        self.events.append(SubscriptionCommitted(
            reference=subscription.reference,
            user_id=subscription.user_id,
            provider=subscription.provider,
            order_id=subscription.order_id,
            subscription_id=subscription.id,
            amount=str(subscription.price),
        ))
        return subscription

    @staticmethod
    def _already_settled(stored: Any, provider_order: ProviderOrder) -> Any:
        """Another saga run (live purchase or stale sweep) settled the record first."""
        if stored.saga_state == SagaState.COMMITTED:
            logger.info("saga_already_committed", record_id=stored.id, provider_order_id=stored.provider_order_id)
            return stored
        logger.critical(
            "saga_commit_after_settlement",
            record_id=stored.id,
            saga_state=stored.saga_state.value,
            provider_order_id=provider_order.provider_order_id,
        )
        raise InconsistentStateException(
            "Provider order was placed after the debit had already been settled",
            reference=stored.reference,
            details={"provider_order_id": provider_order.provider_order_id, "saga_state": stored.saga_state.value},
        )

    async def _compensate(self, record: Any, repo: str, *, reason: str) -> bool:
        """
        Credit back exactly what was debited, as a new ledger entry.

        The saga is claimed (reserved → compensated) before the credit in the
        same unit of work; returns False when another run already settled it.
        """
        try:
            async with self._uow_factory() as uow:
                record.mark_compensated(reason)
                if not await getattr(uow, repo).update_if_reserved(record):
                    logger.warning("compensation_skipped_already_settled", record_id=record.id, record_type=repo)
                    return False
                credit = await self._wallet(uow).credit(
                    record.user_id,
                    record.price,
                    reference=new_reference("REVERSAL"),
                    order_reference=record.reference,
                    description=f"Reversal of {record.reference}",
                )
        except Exception as exc:
            logger.critical(
                "purchase_compensation_failed",
                record_id=record.id,
                record_type=repo,
                amount=str(record.price),
                reason=reason,
                error=str(exc),
            )
            await self._flag_compensation_failed(record, repo, str(exc))
            self.events.append(CompensationFailed(
                reference=record.reference,
                user_id=record.user_id,
                provider=record.provider,
                amount=str(record.price),
                reason=str(exc),
            ))
            raise InconsistentStateException(
                "Wallet was debited but the compensating credit failed",
                reference=record.reference,
                details={"amount": str(record.price)},
            ) from exc

        logger.info(
            "purchase_compensated",
            record_id=record.id,
            record_type=repo,
            refund_reference=credit.reference,
            amount=str(record.price),
            reason=reason,
        )
        self.events.append(OrderCompensated(
            reference=record.reference,
            user_id=record.user_id,
            provider=record.provider,
            order_id=record.id if repo == _ORDERS else record.order_id,
            amount=str(record.price),
            reason=reason,
        ))
        return True

    async def _flag_compensation_failed(self, record: Any, repo: str, reason: str) -> None:
        try:
            async with self._uow_factory() as uow:
                repository = getattr(uow, repo)
                stored = await repository.get_by_id(record.id)
                if stored is not None and stored.saga_state == SagaState.RESERVED:
                    stored.mark_compensation_failed(reason)
                    await repository.update(stored)
        except Exception as exc:
            # The record stays `reserved` and is picked up by the stale sweep.
            logger.critical("compensation_flag_failed", record_id=record.id, record_type=repo, error=str(exc))

    async def _process_commission(self, debit: LedgerEntry) -> Optional[ReferralCommission]:
        """Referral side effect; its failure never undoes a committed purchase."""
        try:
            async with self._uow_factory() as uow:
                service = ReferralDomainService(
                    uow.referral_repository,
                    uow.commission_repository,
                    self._wallet(uow),
                    self._commission_policy,
                )
                commission = await service.process_commission(debit)
        except Exception as exc:
            logger.error("referral_commission_failed", reference=debit.reference, error=str(exc))
            return None
        if commission is not None:
            logger.info(
                "referral_commission_paid",
                referrer_id=commission.referrer_id,
                amount=str(commission.amount),
                rate=str(commission.rate),
            )
        return commission

    # Helpers

    @staticmethod
    def _wallet(uow: AbstractUnitOfWork) -> WalletDomainService:
        return WalletDomainService(uow.wallet_repository, uow.ledger_repository)

    @staticmethod
    async def _ensure_balance(uow: AbstractUnitOfWork, user_id: int, price: Decimal) -> None:
        wallet = await uow.wallet_repository.get(user_id)
        if wallet is None:
            raise WalletNotFoundException(user_id)
        if wallet.balance < price:
            raise InsufficientBalanceException(user_id, price, wallet.balance)

    @staticmethod
    async def _owned_order(uow: AbstractUnitOfWork, user_id: int, order_id: int) -> Order:
        order = await uow.order_repository.get_by_id(order_id)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundException(order_id)
        return order

    def _schedule_refresh(self, order: Order) -> None:
        if self._scheduler is None or order.status not in CANCELLABLE_STATUSES:
            return
        try:
            self._scheduler.refresh_order_status(order.id, countdown=self._refresh_after)
        except Exception as exc:
            # The periodic pending sweep picks the order up anyway.
            logger.warning("status_refresh_schedule_failed", order_id=order.id, error=str(exc))

    def _enabled_adapter(self, provider: str) -> FulfillmentProvider:
        adapter = self._registry.get(provider)
        if not adapter.is_enabled():
            raise ProviderNotAvailableException(provider, reason=f"Provider {provider} is disabled")
        return adapter

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events


def _reason(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc) or type(exc).__name__
