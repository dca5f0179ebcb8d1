"""
钱包领域服务 - 余额变动与流水记录必须成对发生
"""
from decimal import Decimal
from typing import Optional

from .entity import EntryDirection, EntryStatus, LedgerEntry, new_reference
from .repository import LedgerRepository, WalletRepository
from domain.common.clock import utcnow
from domain.common.exceptions import DomainValidationException


class WalletDomainService:
    """
    钱包领域服务

    职责：
    1. 原子扣款/入账
    2. 每次余额变动追加一条流水，流水号全局唯一
    """

    def __init__(self, wallet_repository: WalletRepository, ledger_repository: LedgerRepository):
        self.wallet_repository = wallet_repository
        self.ledger_repository = ledger_repository

    async def debit(
        self,
        user_id: int,
        amount: Decimal,
        *,
        reference: Optional[str] = None,
        order_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        """扣款并记录借方流水"""
        self._ensure_positive(amount)
        before, after = await self.wallet_repository.debit(user_id, amount)
        entry = LedgerEntry(
            id=None,
            user_id=user_id,
            direction=EntryDirection.DEBIT,
            amount=amount,
            balance_before=before,
            balance_after=after,
            reference=reference or new_reference(),
            status=EntryStatus.COMPLETED,
            order_reference=order_reference,
            description=description,
            created_at=utcnow(),
        )
        return await self.ledger_repository.record(entry)

    async def credit(
        self,
        user_id: int,
        amount: Decimal,
        *,
        reference: Optional[str] = None,
        order_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        """入账并记录贷方流水（补偿时同样生成新流水，而不是冲销旧流水）"""
        self._ensure_positive(amount)
        before, after = await self.wallet_repository.credit(user_id, amount)
        entry = LedgerEntry(
            id=None,
            user_id=user_id,
            direction=EntryDirection.CREDIT,
            amount=amount,
            balance_before=before,
            balance_after=after,
            reference=reference or new_reference(),
            status=EntryStatus.COMPLETED,
            order_reference=order_reference,
            description=description,
            created_at=utcnow(),
        )
        return await self.ledger_repository.record(entry)

    @staticmethod
    def _ensure_positive(amount: Decimal) -> None:
        if amount <= 0:
            raise DomainValidationException(
                f"金额必须大于0: {amount}",
                field="amount",
            )
