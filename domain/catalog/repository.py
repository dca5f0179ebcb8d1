"""
目录仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import CatalogItem, ItemKind


class CatalogRepository(ABC):
    """目录仓储抽象接口"""

    @abstractmethod
    async def get_by_id(self, item_id: int) -> Optional[CatalogItem]:
        """根据ID获取条目"""
        pass

    @abstractmethod
    async def get_by_provider_item(self, provider: str, provider_item_id: str) -> Optional[CatalogItem]:
        """根据提供商及其原生ID获取条目"""
        pass

    @abstractmethod
    async def find_for_selector(
        self,
        provider: str,
        kind: ItemKind,
        country: Optional[str],
        product: Optional[str],
    ) -> Optional[CatalogItem]:
        """查找某提供商下匹配国家/产品的最便宜的可用条目"""
        pass

    @abstractmethod
    async def list_active(
        self,
        kind: Optional[ItemKind] = None,
        provider: Optional[str] = None,
        skip: int = 0,
        limit: int = 500,
    ) -> List[CatalogItem]:
        """获取可用条目"""
        pass

    @abstractmethod
    async def upsert(self, item: CatalogItem) -> CatalogItem:
        """按 (provider, provider_item_id) 新增或更新条目"""
        pass

    @abstractmethod
    async def update_price(self, item: CatalogItem) -> CatalogItem:
        """仅更新售价"""
        pass
