"""
推荐领域服务 - 从已完成的扣款交易派生佣金
"""
from decimal import Decimal
from typing import Optional

from .entity import CommissionPolicy, CommissionStatus, ReferralCommission
from .repository import ReferralCommissionRepository, ReferralRepository
from domain.common.clock import utcnow
from domain.wallet.entity import EntryDirection, LedgerEntry, new_reference
from domain.wallet.service import WalletDomainService


class ReferralDomainService:
    """
    推荐佣金

    业务规则：
    1. 只有借方（消费）流水可产生佣金，且每笔交易最多一次
    2. 被推荐人必须有有效推荐关系
    3. 费率按被推荐人已购买次数分级
    4. 佣金直接入账到推荐人钱包并记录流水
    """

    def __init__(
        self,
        referral_repository: ReferralRepository,
        commission_repository: ReferralCommissionRepository,
        wallet_service: WalletDomainService,
        policy: Optional[CommissionPolicy] = None,
    ):
        self.referral_repository = referral_repository
        self.commission_repository = commission_repository
        self.wallet_service = wallet_service
        self.policy = policy or CommissionPolicy()

    async def process_commission(self, entry: LedgerEntry) -> Optional[ReferralCommission]:
        """为一笔已提交的扣款流水计算并发放佣金；不符合条件时返回 None"""
        if entry.direction != EntryDirection.DEBIT:
            return None

        referral = await self.referral_repository.get_active_by_referee(entry.user_id)
        if referral is None or not referral.is_active:
            return None

        if await self.commission_repository.exists_for_transaction(entry.reference):
            return None

        rate, amount = referral.commission_for(entry.amount, self.policy)
        if amount <= Decimal("0"):
            return None

        commission = await self.commission_repository.create(
            ReferralCommission(
                id=None,
                referral_id=referral.id,
                referrer_id=referral.referrer_id,
                referee_id=referral.referee_id,
                transaction_reference=entry.reference,
                purchase_amount=entry.amount,
                rate=rate,
                amount=amount,
                status=CommissionStatus.PAID,
                created_at=utcnow(),
            )
        )

        await self.wallet_service.credit(
            referral.referrer_id,
            amount,
            reference=new_reference("REF_COMM"),
            order_reference=entry.reference,
            description=f"Referral commission ({rate}%)",
        )

        referral.record_purchase(amount)
        await self.referral_repository.update(referral)
        return commission
