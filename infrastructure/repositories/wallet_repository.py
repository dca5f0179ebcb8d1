"""
钱包与流水仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import List, Optional, Tuple
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import (
    BusinessException,
    InsufficientBalanceException,
    WalletNotFoundException,
)
from domain.common.clock import utcnow
from domain.wallet.entity import EntryDirection, EntryStatus, LedgerEntry, Wallet
from domain.wallet.repository import LedgerRepository, WalletRepository
from infrastructure.models.wallet import LedgerEntryModel, WalletModel
from shared.codes import BusinessCode
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyWalletRepository(WalletRepository):
    """钱包仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WalletModel) -> Wallet:
        return Wallet(
            user_id=model.user_id,
            balance=Decimal(str(model.balance)),
            currency=model.currency,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _balance(self, user_id: int) -> Optional[Decimal]:
        result = await self.session.execute(
            select(WalletModel.balance).where(WalletModel.user_id == user_id)
        )
        balance = result.scalar_one_or_none()
        return Decimal(str(balance)) if balance is not None else None

    async def get(self, user_id: int) -> Optional[Wallet]:
        result = await self.session.execute(
            select(WalletModel).where(WalletModel.user_id == user_id)
        )
        db_wallet = result.scalar_one_or_none()
        return self._to_entity(db_wallet) if db_wallet else None

    async def create(self, wallet: Wallet) -> Wallet:
        db_wallet = WalletModel(
            user_id=wallet.user_id,
            balance=wallet.balance,
            currency=wallet.currency,
        )
        self.session.add(db_wallet)
        await self.session.flush()
        await self.session.refresh(db_wallet)
        logger.info("wallet_created", user_id=wallet.user_id)
        return self._to_entity(db_wallet)

    async def debit(self, user_id: int, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """条件 UPDATE：余额校验与扣减在同一条语句中完成"""
        result = await self.session.execute(
            update(WalletModel)
            .where(WalletModel.user_id == user_id, WalletModel.balance >= amount)
            .values(balance=WalletModel.balance - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = await self._balance(user_id)
            if available is None:
                raise WalletNotFoundException(user_id)
            logger.info(
                "wallet_debit_rejected",
                user_id=user_id,
                amount=str(amount),
                available=str(available),
            )
            raise InsufficientBalanceException(user_id, amount, available)

        after = await self._balance(user_id)
        before = after + amount
        logger.info("wallet_debited", user_id=user_id, amount=str(amount), balance_after=str(after))
        return before, after

    async def credit(self, user_id: int, amount: Decimal) -> Tuple[Decimal, Decimal]:
        result = await self.session.execute(
            update(WalletModel)
            .where(WalletModel.user_id == user_id)
            .values(balance=WalletModel.balance + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise WalletNotFoundException(user_id)

        after = await self._balance(user_id)
        before = after - amount
        logger.info("wallet_credited", user_id=user_id, amount=str(amount), balance_after=str(after))
        return before, after


class SQLAlchemyLedgerRepository(LedgerRepository):
    """流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: LedgerEntryModel) -> LedgerEntry:
        """将数据库模型转换为领域实体"""
        return LedgerEntry(
            id=model.id,
            user_id=model.user_id,
            direction=EntryDirection(model.direction),
            amount=Decimal(str(model.amount)),
            balance_before=Decimal(str(model.balance_before)),
            balance_after=Decimal(str(model.balance_after)),
            reference=model.reference,
            status=EntryStatus(model.status),
            order_reference=model.order_reference,
            description=model.description,
            created_at=model.created_at,
        )

    def _to_model(self, entity: LedgerEntry) -> LedgerEntryModel:
        """将领域实体转换为数据库模型"""
        return LedgerEntryModel(
            user_id=entity.user_id,
            direction=entity.direction.value,
            amount=entity.amount,
            balance_before=entity.balance_before,
            balance_after=entity.balance_after,
            reference=entity.reference,
            status=entity.status.value,
            order_reference=entity.order_reference,
            description=entity.description,
            created_at=entity.created_at or utcnow(),
        )

    async def record(self, entry: LedgerEntry) -> LedgerEntry:
        try:
            db_entry = self._to_model(entry)
            self.session.add(db_entry)
            await self.session.flush()
        except IntegrityError as e:
            if "reference" in str(e).lower():
                logger.error("ledger_reference_conflict", reference=entry.reference)
                raise BusinessException(
                    code=BusinessCode.DUPLICATE_REFERENCE,
                    message=f"Ledger reference already exists: {entry.reference}",
                    error_type="DuplicateReference",
                    details={"reference": entry.reference},
                ) from e
            raise
        logger.info(
            "ledger_entry_recorded",
            user_id=entry.user_id,
            reference=entry.reference,
            direction=entry.direction.value,
            amount=str(entry.amount),
            balance_after=str(entry.balance_after),
        )
        return self._to_entity(db_entry)

    async def get_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntryModel).where(LedgerEntryModel.reference == reference)
        )
        db_entry = result.scalar_one_or_none()
        return self._to_entity(db_entry) if db_entry else None

    async def list_by_user(self, user_id: int, skip: int = 0, limit: int = 100) -> List[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.user_id == user_id)
            .order_by(LedgerEntryModel.id.asc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(e) for e in result.scalars().all()]

    async def list_by_order_reference(self, order_reference: str) -> List[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.order_reference == order_reference)
            .order_by(LedgerEntryModel.id.asc())
        )
        return [self._to_entity(e) for e in result.scalars().all()]
