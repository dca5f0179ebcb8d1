"""
钱包领域实体 - 余额与不可变流水
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.clock import ensure_utc
from domain.common.exceptions import DomainValidationException


class EntryDirection(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class EntryStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


def new_reference(prefix: str = "TXN") -> str:
    """生成全局唯一的流水号；每次尝试都生成新值，不做客户端级去重。"""
    return f"{prefix}_{int(time.time())}_{uuid.uuid4().hex[:16].upper()}"


@dataclass
class Wallet:
    user_id: int
    balance: Decimal
    currency: str = "NGN"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.balance < 0:
            raise DomainValidationException(
                f"余额不能为负数: {self.balance}",
                field="balance",
            )
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)


@dataclass(frozen=True)
class LedgerEntry:
    """
    流水实体（不可变）

    业务规则：
    1. 金额必须大于0
    2. balance_after = balance_before ± amount
    3. 扣款后余额不能为负
    """

    id: Optional[int]
    user_id: int
    direction: EntryDirection
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference: str
    status: EntryStatus = EntryStatus.COMPLETED
    order_reference: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"流水金额必须大于0: {self.amount}",
                field="amount",
            )
        if not self.reference:
            raise DomainValidationException("流水号不能为空", field="reference")
        sign = -1 if self.direction == EntryDirection.DEBIT else 1
        if self.balance_after != self.balance_before + sign * self.amount:
            raise DomainValidationException(
                f"余额不一致: {self.balance_before} {self.direction.value} {self.amount} != {self.balance_after}",
                field="balance_after",
            )
        if self.balance_after < 0:
            raise DomainValidationException(
                f"扣款后余额为负: {self.balance_after}",
                field="balance_after",
            )
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))
