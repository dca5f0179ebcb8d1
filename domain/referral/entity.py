"""
推荐领域实体 - 推荐关系与佣金
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.catalog.pricing import quantize_money
from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException


class ReferralStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


@dataclass(frozen=True)
class CommissionPolicy:
    """被推荐人前 N 次购买按 first_rate 计佣，之后按 later_rate（百分比）"""

    first_purchases: int = 3
    first_rate: Decimal = Decimal("10")
    later_rate: Decimal = Decimal("5")

    def rate_for(self, purchase_count: int) -> Decimal:
        return self.first_rate if purchase_count < self.first_purchases else self.later_rate


@dataclass
class Referral:
    id: Optional[int]
    referrer_id: int
    referee_id: int
    status: ReferralStatus = ReferralStatus.ACTIVE
    purchase_count: int = 0
    total_commission_earned: Decimal = field(default_factory=lambda: Decimal("0"))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.referrer_id == self.referee_id:
            raise DomainValidationException("不能推荐自己", field="referee_id")
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def is_active(self) -> bool:
        return self.status == ReferralStatus.ACTIVE

    def commission_for(self, amount: Decimal, policy: CommissionPolicy) -> tuple[Decimal, Decimal]:
        """返回 (费率, 佣金金额)"""
        rate = policy.rate_for(self.purchase_count)
        return rate, quantize_money(amount * rate / Decimal("100"))

    def record_purchase(self, commission: Decimal) -> None:
        self.purchase_count += 1
        self.total_commission_earned += commission
        self.updated_at = utcnow()


@dataclass
class ReferralCommission:
    id: Optional[int]
    referral_id: int
    referrer_id: int
    referee_id: int
    transaction_reference: str
    purchase_amount: Decimal
    rate: Decimal
    amount: Decimal
    status: CommissionStatus = CommissionStatus.PAID
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount < 0:
            raise DomainValidationException(
                f"佣金金额不能为负数: {self.amount}",
                field="amount",
            )
        self.created_at = ensure_utc(self.created_at)
