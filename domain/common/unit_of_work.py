"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.catalog.repository import CatalogRepository
from domain.order.repository import OrderRepository, SubscriptionRepository
from domain.referral.repository import ReferralCommissionRepository, ReferralRepository
from domain.wallet.repository import LedgerRepository, WalletRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    wallet_repository: WalletRepository
    ledger_repository: LedgerRepository
    catalog_repository: CatalogRepository
    order_repository: OrderRepository
    subscription_repository: SubscriptionRepository
    referral_repository: ReferralRepository
    commission_repository: ReferralCommissionRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.wallet_repository = None  # type: ignore[assignment]
        self.ledger_repository = None  # type: ignore[assignment]
        self.catalog_repository = None  # type: ignore[assignment]
        self.order_repository = None  # type: ignore[assignment]
        self.subscription_repository = None  # type: ignore[assignment]
        self.referral_repository = None  # type: ignore[assignment]
        self.commission_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
