"""
推荐与佣金仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import List, Optional
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from domain.common.clock import utcnow
from domain.referral.entity import CommissionStatus, Referral, ReferralCommission, ReferralStatus
from domain.referral.repository import ReferralCommissionRepository, ReferralRepository
from infrastructure.models.referral import ReferralCommissionModel, ReferralModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyReferralRepository(ReferralRepository):
    """推荐关系仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ReferralModel) -> Referral:
        return Referral(
            id=model.id,
            referrer_id=model.referrer_id,
            referee_id=model.referee_id,
            status=ReferralStatus(model.status),
            purchase_count=model.purchase_count,
            total_commission_earned=Decimal(str(model.total_commission_earned)),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, referral: Referral) -> Referral:
        db_referral = ReferralModel(
            referrer_id=referral.referrer_id,
            referee_id=referral.referee_id,
            status=referral.status.value,
            purchase_count=referral.purchase_count,
            total_commission_earned=referral.total_commission_earned,
        )
        self.session.add(db_referral)
        await self.session.flush()
        await self.session.refresh(db_referral)
        logger.info(
            "referral_created",
            referral_id=db_referral.id,
            referrer_id=db_referral.referrer_id,
            referee_id=db_referral.referee_id,
        )
        return self._to_entity(db_referral)

    async def get_active_by_referee(self, referee_id: int) -> Optional[Referral]:
        result = await self.session.execute(
            select(ReferralModel).where(
                ReferralModel.referee_id == referee_id,
                ReferralModel.status == ReferralStatus.ACTIVE.value,
            )
        )
        db_referral = result.scalar_one_or_none()
        return self._to_entity(db_referral) if db_referral else None

    async def update(self, referral: Referral) -> Referral:
        result = await self.session.execute(
            select(ReferralModel).where(ReferralModel.id == referral.id)
        )
        db_referral = result.scalar_one_or_none()
        if not db_referral:
            raise ValueError(f"Referral with id {referral.id} not found")

        db_referral.status = referral.status.value
        db_referral.purchase_count = referral.purchase_count
        db_referral.total_commission_earned = referral.total_commission_earned
        db_referral.updated_at = referral.updated_at or utcnow()

        await self.session.flush()
        await self.session.refresh(db_referral)
        return self._to_entity(db_referral)


class SQLAlchemyReferralCommissionRepository(ReferralCommissionRepository):
    """佣金仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ReferralCommissionModel) -> ReferralCommission:
        return ReferralCommission(
            id=model.id,
            referral_id=model.referral_id,
            referrer_id=model.referrer_id,
            referee_id=model.referee_id,
            transaction_reference=model.transaction_reference,
            purchase_amount=Decimal(str(model.purchase_amount)),
            rate=Decimal(str(model.rate)),
            amount=Decimal(str(model.amount)),
            status=CommissionStatus(model.status),
            created_at=model.created_at,
        )

    async def create(self, commission: ReferralCommission) -> ReferralCommission:
        db_commission = ReferralCommissionModel(
            referral_id=commission.referral_id,
            referrer_id=commission.referrer_id,
            referee_id=commission.referee_id,
            transaction_reference=commission.transaction_reference,
            purchase_amount=commission.purchase_amount,
            rate=commission.rate,
            amount=commission.amount,
            status=commission.status.value,
            created_at=commission.created_at or utcnow(),
        )
        self.session.add(db_commission)
        await self.session.flush()
        await self.session.refresh(db_commission)
        logger.info(
            "referral_commission_created",
            commission_id=db_commission.id,
            referrer_id=db_commission.referrer_id,
            transaction_reference=db_commission.transaction_reference,
            amount=str(db_commission.amount),
        )
        return self._to_entity(db_commission)

    async def exists_for_transaction(self, transaction_reference: str) -> bool:
        result = await self.session.execute(
            select(func.count(ReferralCommissionModel.id)).where(
                ReferralCommissionModel.transaction_reference == transaction_reference
            )
        )
        return result.scalar_one() > 0

    async def list_by_referrer(self, referrer_id: int, skip: int = 0, limit: int = 100) -> List[ReferralCommission]:
        result = await self.session.execute(
            select(ReferralCommissionModel)
            .where(ReferralCommissionModel.referrer_id == referrer_id)
            .order_by(ReferralCommissionModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(c) for c in result.scalars().all()]
