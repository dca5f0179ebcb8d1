"""
钱包与账本数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Index, CheckConstraint
from datetime import datetime, timezone

from .base import Base


class WalletModel(Base):
    """
    钱包数据库模型

    余额只能通过条件 UPDATE 原子扣减，业务规则在 domain.wallet 中
    """
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, unique=True, index=True, nullable=False, comment="用户ID")
    balance = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="可用余额")
    currency = Column(String(3), nullable=False, default="NGN", comment="货币代码 ISO-4217")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="balance_non_negative"),
    )

    def __repr__(self):
        return f"<WalletModel(user_id={self.user_id}, balance={self.balance})>"


class LedgerEntryModel(Base):
    """
    账本流水模型

    只追加，不修改；reference 全局唯一
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True, comment="用户ID")
    direction = Column(String(10), nullable=False, comment="方向: debit/credit")
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="金额")
    balance_before = Column(Numeric(precision=15, scale=2), nullable=False, comment="变动前余额")
    balance_after = Column(Numeric(precision=15, scale=2), nullable=False, comment="变动后余额")
    reference = Column(String(100), unique=True, index=True, nullable=False, comment="流水号")
    order_reference = Column(String(100), nullable=True, index=True, comment="关联订单流水号")
    status = Column(String(20), nullable=False, default="completed", comment="状态: completed/pending/failed")
    description = Column(Text, nullable=True, comment="描述")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )

    __table_args__ = (
        Index("ix_ledger_entries_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<LedgerEntryModel(reference='{self.reference}', direction='{self.direction}', "
            f"amount={self.amount})>"
        )
