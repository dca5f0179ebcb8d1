"""
订单领域实体 - 订单/档案聚合根与附属订阅
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from domain.catalog.entity import ItemKind
from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """本地订单状态（与提供商原生状态分开保存）"""
    PENDING = "pending"
    PROCESSING = "processing"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"

    @classmethod
    def from_internal(cls, value: Optional[str]) -> "OrderStatus":
        """未知值一律视为 pending，绝不静默变为完成态"""
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


class SagaState(str, Enum):
    """购买 saga 最后完成的步骤：reserved → committed | compensated"""
    RESERVED = "reserved"
    COMMITTED = "committed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.PROCESSING)
TOP_UP_STATUSES = (OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.ACTIVE)
# Terminal outcomes: the money went back to the wallet or the activation window
# closed. Provider state must not reopen these.
STICKY_STATUSES = (OrderStatus.FAILED, OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.EXPIRED)
# Provider ended the order itself; the user is owed the price back (expired
# orders only when nothing was delivered).
PROVIDER_ENDED_STATUSES = (OrderStatus.FAILED, OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.EXPIRED)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_missing(target: dict, incoming: Mapping[str, Any]) -> bool:
    """
    合并履约数据；返回是否有变化

    标量字段（号码、激活码、凭据）只填空，从不覆盖；列表字段（如 sms）追加尚未记录的条目。
    """
    changed = False
    for key, value in incoming.items():
        if _is_empty(value):
            continue
        current = target.get(key)
        if _is_empty(current):
            target[key] = list(value) if isinstance(value, list) else value
            changed = True
        elif isinstance(current, list) and isinstance(value, list):
            new_entries = [entry for entry in value if entry not in current]
            if new_entries:
                target[key] = current + new_entries
                changed = True
    return changed


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 价格在下单时锁定，并保存目录快照
    2. 状态转换只能由购买编排或对账触发
    3. 提供商原生状态原样保存，每次接触时重新映射
    4. 补充履约数据时只填空字段（幂等）
    """

    id: Optional[int]
    user_id: int
    kind: ItemKind
    provider: str
    catalog_item_id: Optional[int]
    reference: str
    price: Decimal
    quantity: int = 1
    status: OrderStatus = OrderStatus.PENDING
    saga_state: SagaState = SagaState.RESERVED
    provider_order_id: Optional[str] = None
    provider_status: Optional[str] = None
    target: Optional[str] = None
    item_snapshot: dict = field(default_factory=dict)
    fulfillment: dict = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def __post_init__(self):
        if self.price <= 0:
            raise DomainValidationException(
                f"订单金额必须大于0: {self.price}",
                field="price",
            )
        if self.quantity <= 0:
            raise DomainValidationException("数量必须大于0", field="quantity")
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        self.expires_at = ensure_utc(self.expires_at)
        self.cancelled_at = ensure_utc(self.cancelled_at)
        if self.fulfillment is None:
            self.fulfillment = {}
        if self.item_snapshot is None:
            self.item_snapshot = {}

    def mark_committed(
        self,
        *,
        provider_order_id: str,
        provider_status: Optional[str],
        status: OrderStatus,
        fulfillment: Optional[Mapping[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """远程下单成功：记录提供商订单并提交 saga"""
        self._ensure_reserved()
        self.provider_order_id = provider_order_id
        self.provider_status = provider_status
        self.status = status
        if fulfillment:
            merge_missing(self.fulfillment, fulfillment)
        if expires_at is not None:
            self.expires_at = ensure_utc(expires_at)
        self.saga_state = SagaState.COMMITTED
        self.updated_at = utcnow()

    def mark_compensated(self, reason: Optional[str] = None) -> None:
        """远程下单失败且已退款"""
        self._ensure_reserved()
        self.status = OrderStatus.FAILED
        self.saga_state = SagaState.COMPENSATED
        self.failure_reason = reason
        self.updated_at = utcnow()

    def mark_compensation_failed(self, reason: Optional[str] = None) -> None:
        """补偿失败，需要人工对账"""
        self.saga_state = SagaState.COMPENSATION_FAILED
        self.failure_reason = reason
        self.updated_at = utcnow()

    def _ensure_reserved(self) -> None:
        if self.saga_state != SagaState.RESERVED:
            raise DomainValidationException(
                f"订单 saga 状态为 {self.saga_state.value}，无法再次结算",
                field="saga_state",
            )

    def can_cancel(self) -> bool:
        return self.saga_state == SagaState.COMMITTED and self.status in CANCELLABLE_STATUSES

    def mark_cancelled(self, *, refunded: bool = False) -> None:
        """
        取消订单

        业务规则：只有 pending/processing 的已提交订单可取消
        """
        if not self.can_cancel():
            raise DomainValidationException(
                f"无法取消状态为 {self.status.value} 的订单",
                field="status",
            )
        self.status = OrderStatus.REFUNDED if refunded else OrderStatus.CANCELLED
        self.cancelled_at = utcnow()
        self.updated_at = self.cancelled_at

    def apply_provider_state(
        self,
        *,
        provider_status: Optional[str],
        status: OrderStatus,
        fulfillment: Optional[Mapping[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        """
        对账：保存原生状态、重新映射本地状态、补充缺失字段

        终态（failed/cancelled/refunded/expired）不会被提供商状态重新打开。
        返回是否发生变化；无变化时不更新 updated_at。
        """
        changed = False
        if provider_status is not None and provider_status != self.provider_status:
            self.provider_status = provider_status
            changed = True
        if self.status not in STICKY_STATUSES and status != self.status:
            self.status = status
            changed = True
        if fulfillment and merge_missing(self.fulfillment, fulfillment):
            changed = True
        if expires_at is not None and self.expires_at is None:
            self.expires_at = ensure_utc(expires_at)
            changed = True
        if changed:
            self.updated_at = utcnow()
        return changed

    def is_delivered(self) -> bool:
        return not _is_empty(self.fulfillment.get("code")) or not _is_empty(self.fulfillment.get("sms"))

    def refund_due(self, previous: OrderStatus) -> bool:
        """
        对账后是否需要自动退款

        仅当已提交订单从 pending/processing 被提供商终止时成立；
        过期订单只有在未收到任何短信/验证码时才退款。
        """
        if self.saga_state != SagaState.COMMITTED or previous not in CANCELLABLE_STATUSES:
            return False
        if self.status not in PROVIDER_ENDED_STATUSES:
            return False
        return self.status != OrderStatus.EXPIRED or not self.is_delivered()

    def mark_auto_refunded(self) -> None:
        self.cancelled_at = utcnow()
        self.updated_at = self.cancelled_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def can_top_up(self, now: Optional[datetime] = None) -> bool:
        return (
            self.kind == ItemKind.ESIM
            and self.saga_state == SagaState.COMMITTED
            and self.status in TOP_UP_STATUSES
            and not self.is_expired(now)
        )

    def extend_expiry(self, new_expiry: datetime) -> bool:
        """单调延长有效期：新到期时间更晚才生效，从不缩短"""
        new_expiry = ensure_utc(new_expiry)
        if self.expires_at is not None and new_expiry <= self.expires_at:
            return False
        self.expires_at = new_expiry
        self.updated_at = utcnow()
        return True


@dataclass
class Subscription:
    """
    附属订阅（eSIM 充值）

    与订单共享 saga 状态语义，成功后挂在父订单之下。
    """

    id: Optional[int]
    order_id: int
    user_id: int
    provider: str
    catalog_item_id: Optional[int]
    reference: str
    price: Decimal
    status: OrderStatus = OrderStatus.PENDING
    saga_state: SagaState = SagaState.RESERVED
    provider_order_id: Optional[str] = None
    provider_status: Optional[str] = None
    duration_days: Optional[int] = None
    item_snapshot: dict = field(default_factory=dict)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.price <= 0:
            raise DomainValidationException(
                f"订阅金额必须大于0: {self.price}",
                field="price",
            )
        self.starts_at = ensure_utc(self.starts_at)
        self.expires_at = ensure_utc(self.expires_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        if self.item_snapshot is None:
            self.item_snapshot = {}

    def mark_committed(
        self,
        *,
        provider_order_id: str,
        provider_status: Optional[str],
        status: OrderStatus,
        starts_at: datetime,
        expires_at: Optional[datetime],
    ) -> None:
        if self.saga_state != SagaState.RESERVED:
            raise DomainValidationException(
                f"订阅 saga 状态为 {self.saga_state.value}，无法再次结算",
                field="saga_state",
            )
        self.provider_order_id = provider_order_id
        self.provider_status = provider_status
        self.status = status
        self.starts_at = ensure_utc(starts_at)
        self.expires_at = ensure_utc(expires_at)
        self.saga_state = SagaState.COMMITTED
        self.updated_at = utcnow()

    def mark_compensated(self, reason: Optional[str] = None) -> None:
        if self.saga_state != SagaState.RESERVED:
            raise DomainValidationException(
                f"订阅 saga 状态为 {self.saga_state.value}，无法补偿",
                field="saga_state",
            )
        self.status = OrderStatus.FAILED
        self.saga_state = SagaState.COMPENSATED
        self.failure_reason = reason
        self.updated_at = utcnow()

    def mark_compensation_failed(self, reason: Optional[str] = None) -> None:
        self.saga_state = SagaState.COMPENSATION_FAILED
        self.failure_reason = reason
        self.updated_at = utcnow()
