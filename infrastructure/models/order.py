"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有业务规则都在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True, comment="用户ID")
    kind = Column(String(20), nullable=False, comment="类型: phone_number/esim/smm")
    provider = Column(String(50), nullable=False, index=True, comment="提供商标识")
    catalog_item_id = Column(Integer, nullable=True, comment="目录条目ID")
    reference = Column(String(100), unique=True, index=True, nullable=False, comment="流水号（与扣款流水一致）")

    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="锁定价格")
    quantity = Column(Integer, nullable=False, default=1, comment="数量")

    status = Column(String(20), nullable=False, default="pending", index=True, comment="本地状态")
    saga_state = Column(
        String(30),
        nullable=False,
        default="reserved",
        index=True,
        comment="saga 状态: reserved/committed/compensated/compensation_failed"
    )
    provider_order_id = Column(String(200), nullable=True, index=True, comment="提供商订单ID")
    provider_status = Column(String(100), nullable=True, comment="提供商原生状态")

    target = Column(String(1000), nullable=True, comment="SMM 目标链接")
    item_snapshot = Column(JSON, nullable=True, comment="下单时的目录快照")
    fulfillment = Column(JSON, nullable=True, comment="履约数据（号码/验证码/ICCID 等）")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    expires_at = Column(DateTime(timezone=True), nullable=True, comment="到期时间")
    cancelled_at = Column(DateTime(timezone=True), nullable=True, comment="取消时间")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    subscriptions = relationship("SubscriptionModel", back_populates="order", lazy="select")

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_saga_created", "saga_state", "created_at"),
        Index("ix_orders_status_updated", "status", "updated_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, reference='{self.reference}', "
            f"provider='{self.provider}', status='{self.status}', saga_state='{self.saga_state}')>"
        )


class SubscriptionModel(Base):
    """
    订阅（eSIM 充值）模型

    作为订单聚合的一部分，记录每次充值
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="父订单ID"
    )
    user_id = Column(Integer, nullable=False, index=True, comment="用户ID")
    provider = Column(String(50), nullable=False, comment="提供商标识")
    catalog_item_id = Column(Integer, nullable=True, comment="目录条目ID")
    reference = Column(String(100), unique=True, index=True, nullable=False, comment="流水号")
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="锁定价格")

    status = Column(String(20), nullable=False, default="pending", comment="本地状态")
    saga_state = Column(String(30), nullable=False, default="reserved", index=True, comment="saga 状态")
    provider_order_id = Column(String(200), nullable=True, comment="提供商订单ID")
    provider_status = Column(String(100), nullable=True, comment="提供商原生状态")
    duration_days = Column(Integer, nullable=True, comment="有效天数")
    item_snapshot = Column(JSON, nullable=True, comment="下单时的目录快照")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    starts_at = Column(DateTime(timezone=True), nullable=True, comment="生效时间")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="到期时间")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    order = relationship("OrderModel", back_populates="subscriptions")

    __table_args__ = (
        Index("ix_subscriptions_saga_created", "saga_state", "created_at"),
    )

    def __repr__(self):
        return (
            f"<SubscriptionModel(id={self.id}, order_id={self.order_id}, "
            f"reference='{self.reference}', saga_state='{self.saga_state}')>"
        )
