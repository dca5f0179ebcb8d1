"""
推荐仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Referral, ReferralCommission


class ReferralRepository(ABC):
    """推荐关系仓储抽象接口"""

    @abstractmethod
    async def create(self, referral: Referral) -> Referral:
        """创建推荐关系"""
        pass

    @abstractmethod
    async def get_active_by_referee(self, referee_id: int) -> Optional[Referral]:
        """获取被推荐人当前有效的推荐关系"""
        pass

    @abstractmethod
    async def update(self, referral: Referral) -> Referral:
        """更新推荐关系"""
        pass


class ReferralCommissionRepository(ABC):
    """佣金仓储抽象接口"""

    @abstractmethod
    async def create(self, commission: ReferralCommission) -> ReferralCommission:
        """创建佣金记录"""
        pass

    @abstractmethod
    async def exists_for_transaction(self, transaction_reference: str) -> bool:
        """检查某笔交易是否已产生佣金"""
        pass

    @abstractmethod
    async def list_by_referrer(self, referrer_id: int, skip: int = 0, limit: int = 100) -> List[ReferralCommission]:
        """获取推荐人的佣金"""
        pass
