"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .entity import Order, OrderStatus, Subscription


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def get_by_reference(self, reference: str) -> Optional[Order]:
        """根据流水号获取订单"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """更新订单"""
        pass

    @abstractmethod
    async def compare_and_update(self, order: Order, expected: Sequence[OrderStatus]) -> bool:
        """仅当存储中的状态仍在 expected 内时更新；返回是否更新成功"""
        pass

    @abstractmethod
    async def update_if_reserved(self, order: Order) -> bool:
        """仅当 saga 仍为 reserved 时写入结算结果；返回是否写入"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: int, skip: int = 0, limit: int = 100) -> List[Order]:
        """获取用户订单"""
        pass

    @abstractmethod
    async def list_for_reconcile(self, statuses: Sequence[OrderStatus], limit: int = 100) -> List[Order]:
        """获取需要对账的已提交订单（最久未更新优先）"""
        pass

    @abstractmethod
    async def list_stale_reserved(self, older_than: datetime, limit: int = 100) -> List[Order]:
        """获取在 older_than 之前创建、仍处于 reserved 的订单"""
        pass


class SubscriptionRepository(ABC):
    """订阅仓储抽象接口"""

    @abstractmethod
    async def create(self, subscription: Subscription) -> Subscription:
        """创建订阅"""
        pass

    @abstractmethod
    async def get_by_id(self, subscription_id: int) -> Optional[Subscription]:
        """根据ID获取订阅"""
        pass

    @abstractmethod
    async def update(self, subscription: Subscription) -> Subscription:
        """更新订阅"""
        pass

    @abstractmethod
    async def update_if_reserved(self, subscription: Subscription) -> bool:
        """仅当 saga 仍为 reserved 时写入结算结果；返回是否写入"""
        pass

    @abstractmethod
    async def list_by_order(self, order_id: int) -> List[Subscription]:
        """获取订单下的全部订阅"""
        pass

    @abstractmethod
    async def list_stale_reserved(self, older_than: datetime, limit: int = 100) -> List[Subscription]:
        """获取在 older_than 之前创建、仍处于 reserved 的订阅"""
        pass
