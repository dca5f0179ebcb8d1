"""
推荐关系与佣金数据库模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index
from datetime import datetime, timezone

from .base import Base


class ReferralModel(Base):
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, index=True)
    referrer_id = Column(Integer, nullable=False, index=True, comment="推荐人用户ID")
    referee_id = Column(Integer, unique=True, nullable=False, index=True, comment="被推荐人用户ID")
    status = Column(String(20), nullable=False, default="active", comment="状态: active/inactive")
    purchase_count = Column(Integer, nullable=False, default=0, comment="被推荐人已计佣购买次数")
    total_commission_earned = Column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=0,
        comment="累计佣金"
    )

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

    def __repr__(self):
        return f"<ReferralModel(referrer_id={self.referrer_id}, referee_id={self.referee_id})>"


class ReferralCommissionModel(Base):
    __tablename__ = "referral_commissions"

    id = Column(Integer, primary_key=True, index=True)
    referral_id = Column(Integer, nullable=False, index=True, comment="推荐关系ID")
    referrer_id = Column(Integer, nullable=False, index=True, comment="推荐人用户ID")
    referee_id = Column(Integer, nullable=False, comment="被推荐人用户ID")
    # 每笔购买流水最多一条佣金
    transaction_reference = Column(String(100), unique=True, nullable=False, comment="购买扣款流水号")
    purchase_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="购买金额")
    rate = Column(Numeric(precision=5, scale=2), nullable=False, comment="佣金比例(%)")
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="佣金金额")
    status = Column(String(20), nullable=False, default="paid", comment="状态: pending/paid")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )

    __table_args__ = (
        Index("ix_referral_commissions_referrer_created", "referrer_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<ReferralCommissionModel(referrer_id={self.referrer_id}, "
            f"transaction_reference='{self.transaction_reference}', amount={self.amount})>"
        )
