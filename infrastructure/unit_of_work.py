"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.catalog_repository import SQLAlchemyCatalogRepository
from infrastructure.repositories.order_repository import (
    SQLAlchemyOrderRepository,
    SQLAlchemySubscriptionRepository,
)
from infrastructure.repositories.referral_repository import (
    SQLAlchemyReferralCommissionRepository,
    SQLAlchemyReferralRepository,
)
from infrastructure.repositories.wallet_repository import (
    SQLAlchemyLedgerRepository,
    SQLAlchemyWalletRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work

    购买 saga 的每一步（扣款预留、提交、补偿）各自使用一个实例，
    保证 saga 状态在远程调用前后都已持久化。
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    def _bind_repositories(self, session: Optional[AsyncSession]) -> None:
        if session is None:
            self.wallet_repository = None  # type: ignore[assignment]
            self.ledger_repository = None  # type: ignore[assignment]
            self.catalog_repository = None  # type: ignore[assignment]
            self.order_repository = None  # type: ignore[assignment]
            self.subscription_repository = None  # type: ignore[assignment]
            self.referral_repository = None  # type: ignore[assignment]
            self.commission_repository = None  # type: ignore[assignment]
            return
        self.wallet_repository = SQLAlchemyWalletRepository(session)
        self.ledger_repository = SQLAlchemyLedgerRepository(session)
        self.catalog_repository = SQLAlchemyCatalogRepository(session)
        self.order_repository = SQLAlchemyOrderRepository(session)
        self.subscription_repository = SQLAlchemySubscriptionRepository(session)
        self.referral_repository = SQLAlchemyReferralRepository(session)
        self.commission_repository = SQLAlchemyReferralCommissionRepository(session)

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._bind_repositories(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # close() also discards a transaction left open by a failed commit
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self._bind_repositories(None)

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
