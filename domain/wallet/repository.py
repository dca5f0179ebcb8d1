"""
钱包仓储接口
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional, Tuple

from .entity import LedgerEntry, Wallet


class WalletRepository(ABC):
    """钱包仓储抽象接口"""

    @abstractmethod
    async def get(self, user_id: int) -> Optional[Wallet]:
        """获取用户钱包"""
        pass

    @abstractmethod
    async def create(self, wallet: Wallet) -> Wallet:
        """创建钱包"""
        pass

    @abstractmethod
    async def debit(self, user_id: int, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """
        原子扣款：读取-校验-写入在存储层一次完成

        返回 (扣款前余额, 扣款后余额)
        余额不足抛出 InsufficientBalanceException，钱包不存在抛出 WalletNotFoundException
        """
        pass

    @abstractmethod
    async def credit(self, user_id: int, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """原子入账，返回 (入账前余额, 入账后余额)"""
        pass


class LedgerRepository(ABC):
    """流水仓储抽象接口（只追加）"""

    @abstractmethod
    async def record(self, entry: LedgerEntry) -> LedgerEntry:
        """追加流水"""
        pass

    @abstractmethod
    async def get_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        """根据流水号获取"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: int, skip: int = 0, limit: int = 100) -> List[LedgerEntry]:
        """获取用户流水，按时间正序"""
        pass

    @abstractmethod
    async def list_by_order_reference(self, order_reference: str) -> List[LedgerEntry]:
        """获取与某订单关联的全部流水"""
        pass
