"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import List, Optional, Sequence
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from domain.catalog.entity import ItemKind
from domain.common.clock import utcnow
from domain.order.entity import Order, OrderStatus, SagaState, Subscription
from domain.order.repository import OrderRepository, SubscriptionRepository
from infrastructure.models.order import OrderModel, SubscriptionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            user_id=model.user_id,
            kind=ItemKind(model.kind),
            provider=model.provider,
            catalog_item_id=model.catalog_item_id,
            reference=model.reference,
            price=Decimal(str(model.price)),
            quantity=model.quantity,
            status=OrderStatus(model.status),
            saga_state=SagaState(model.saga_state),
            provider_order_id=model.provider_order_id,
            provider_status=model.provider_status,
            target=model.target,
            item_snapshot=dict(model.item_snapshot or {}),
            fulfillment=dict(model.fulfillment or {}),
            expires_at=model.expires_at,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            cancelled_at=model.cancelled_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            user_id=entity.user_id,
            kind=entity.kind.value,
            provider=entity.provider,
            catalog_item_id=entity.catalog_item_id,
            reference=entity.reference,
            price=entity.price,
            quantity=entity.quantity,
            status=entity.status.value,
            saga_state=entity.saga_state.value,
            provider_order_id=entity.provider_order_id,
            provider_status=entity.provider_status,
            target=entity.target,
            item_snapshot=entity.item_snapshot,
            fulfillment=entity.fulfillment,
            expires_at=entity.expires_at,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at or utcnow(),
            updated_at=entity.updated_at or utcnow(),
            cancelled_at=entity.cancelled_at,
        )

    @staticmethod
    def _mutable_values(order: Order) -> dict:
        return {
            "status": order.status.value,
            "saga_state": order.saga_state.value,
            "provider_order_id": order.provider_order_id,
            "provider_status": order.provider_status,
            # JSON columns need a fresh object for change detection
            "fulfillment": dict(order.fulfillment),
            "expires_at": order.expires_at,
            "failure_reason": order.failure_reason,
            "updated_at": order.updated_at or utcnow(),
            "cancelled_at": order.cancelled_at,
        }

    async def create(self, order: Order) -> Order:
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        await self.session.refresh(db_order)
        logger.info(
            "order_created",
            order_id=db_order.id,
            reference=db_order.reference,
            provider=db_order.provider,
        )
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        # Conditional writes bypass the identity map; always read the stored row.
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_reference(self, reference: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.reference == reference)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order) -> Order:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order.id)
        )
        db_order = result.scalar_one_or_none()

        if not db_order:
            raise ValueError(f"Order with id {order.id} not found")

        for key, value in self._mutable_values(order).items():
            setattr(db_order, key, value)

        await self.session.flush()
        await self.session.refresh(db_order)

        logger.info(
            "order_updated",
            order_id=db_order.id,
            status=db_order.status,
            saga_state=db_order.saga_state,
        )
        return self._to_entity(db_order)

    async def compare_and_update(self, order: Order, expected: Sequence[OrderStatus]) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order.id,
                OrderModel.status.in_([s.value for s in expected]),
            )
            .values(**self._mutable_values(order))
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount == 1
        if not updated:
            logger.warning("order_conditional_update_skipped", order_id=order.id, status=order.status.value)
        return updated

    async def update_if_reserved(self, order: Order) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id, OrderModel.saga_state == SagaState.RESERVED.value)
            .values(**self._mutable_values(order))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("order_saga_already_settled", order_id=order.id, saga_state=order.saga_state.value)
            return False
        return True

    async def list_by_user(self, user_id: int, skip: int = 0, limit: int = 100) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(o) for o in result.scalars().all()]

    async def list_for_reconcile(self, statuses: Sequence[OrderStatus], limit: int = 100) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.saga_state == SagaState.COMMITTED.value,
                OrderModel.status.in_([s.value for s in statuses]),
                OrderModel.provider_order_id.is_not(None),
            )
            .order_by(OrderModel.updated_at.asc())
            .limit(limit)
        )
        return [self._to_entity(o) for o in result.scalars().all()]

    async def list_stale_reserved(self, older_than: datetime, limit: int = 100) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.saga_state == SagaState.RESERVED.value,
                OrderModel.created_at < older_than,
            )
            .order_by(OrderModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(o) for o in result.scalars().all()]


class SQLAlchemySubscriptionRepository(SubscriptionRepository):
    """订阅仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _mutable_values(subscription: Subscription) -> dict:
        return {
            "status": subscription.status.value,
            "saga_state": subscription.saga_state.value,
            "provider_order_id": subscription.provider_order_id,
            "provider_status": subscription.provider_status,
            "starts_at": subscription.starts_at,
            "expires_at": subscription.expires_at,
            "failure_reason": subscription.failure_reason,
            "updated_at": subscription.updated_at or utcnow(),
        }

    def _to_entity(self, model: SubscriptionModel) -> Subscription:
        return Subscription(
            id=model.id,
            order_id=model.order_id,
            user_id=model.user_id,
            provider=model.provider,
            catalog_item_id=model.catalog_item_id,
            reference=model.reference,
            price=Decimal(str(model.price)),
            status=OrderStatus(model.status),
            saga_state=SagaState(model.saga_state),
            provider_order_id=model.provider_order_id,
            provider_status=model.provider_status,
            duration_days=model.duration_days,
            item_snapshot=dict(model.item_snapshot or {}),
            starts_at=model.starts_at,
            expires_at=model.expires_at,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, subscription: Subscription) -> Subscription:
        db_sub = SubscriptionModel(
            order_id=subscription.order_id,
            user_id=subscription.user_id,
            provider=subscription.provider,
            catalog_item_id=subscription.catalog_item_id,
            reference=subscription.reference,
            price=subscription.price,
            status=subscription.status.value,
            saga_state=subscription.saga_state.value,
            duration_days=subscription.duration_days,
            item_snapshot=subscription.item_snapshot,
            created_at=subscription.created_at or utcnow(),
            updated_at=subscription.updated_at or utcnow(),
        )
        self.session.add(db_sub)
        await self.session.flush()
        await self.session.refresh(db_sub)
        logger.info(
            "subscription_created",
            subscription_id=db_sub.id,
            order_id=db_sub.order_id,
            reference=db_sub.reference,
        )
        return self._to_entity(db_sub)

    async def get_by_id(self, subscription_id: int) -> Optional[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel)
            .where(SubscriptionModel.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        db_sub = result.scalar_one_or_none()
        return self._to_entity(db_sub) if db_sub else None

    async def update(self, subscription: Subscription) -> Subscription:
        result = await self.session.execute(
            select(SubscriptionModel).where(SubscriptionModel.id == subscription.id)
        )
        db_sub = result.scalar_one_or_none()
        if not db_sub:
            raise ValueError(f"Subscription with id {subscription.id} not found")

        for key, value in self._mutable_values(subscription).items():
            setattr(db_sub, key, value)

        await self.session.flush()
        await self.session.refresh(db_sub)
        logger.info(
            "subscription_updated",
            subscription_id=db_sub.id,
            saga_state=db_sub.saga_state,
        )
        return self._to_entity(db_sub)

    async def update_if_reserved(self, subscription: Subscription) -> bool:
        result = await self.session.execute(
            update(SubscriptionModel)
            .where(
                SubscriptionModel.id == subscription.id,
                SubscriptionModel.saga_state == SagaState.RESERVED.value,
            )
            .values(**self._mutable_values(subscription))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("subscription_saga_already_settled", subscription_id=subscription.id)
            return False
        return True

    async def list_by_order(self, order_id: int) -> List[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel)
            .where(SubscriptionModel.order_id == order_id)
            .order_by(SubscriptionModel.created_at.asc())
        )
        return [self._to_entity(s) for s in result.scalars().all()]

    async def list_stale_reserved(self, older_than: datetime, limit: int = 100) -> List[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel)
            .where(
                SubscriptionModel.saga_state == SagaState.RESERVED.value,
                SubscriptionModel.created_at < older_than,
            )
            .order_by(SubscriptionModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(s) for s in result.scalars().all()]
