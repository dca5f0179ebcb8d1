"""
目录仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import List, Optional
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.catalog.entity import CatalogItem, ItemKind
from domain.catalog.repository import CatalogRepository
from domain.common.clock import utcnow
from infrastructure.models.catalog import CatalogItemModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyCatalogRepository(CatalogRepository):
    """目录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CatalogItemModel) -> CatalogItem:
        """将数据库模型转换为领域实体"""
        return CatalogItem(
            id=model.id,
            kind=ItemKind(model.kind),
            provider=model.provider,
            provider_item_id=model.provider_item_id,
            name=model.name,
            wholesale_cost=Decimal(str(model.wholesale_cost)),
            selling_price=Decimal(str(model.selling_price)),
            wholesale_currency=model.wholesale_currency,
            country=model.country,
            product=model.product,
            operator=model.operator,
            available=model.available,
            quantity_unit=model.quantity_unit,
            min_quantity=model.min_quantity,
            max_quantity=model.max_quantity,
            duration_days=model.duration_days,
            is_active=model.is_active,
            metadata=model.extra_metadata or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _apply(self, model: CatalogItemModel, entity: CatalogItem) -> None:
        model.kind = entity.kind.value
        model.provider = entity.provider
        model.provider_item_id = entity.provider_item_id
        model.name = entity.name
        model.wholesale_cost = entity.wholesale_cost
        model.wholesale_currency = entity.wholesale_currency
        model.selling_price = entity.selling_price
        model.country = entity.country
        model.product = entity.product
        model.operator = entity.operator
        model.available = entity.available
        model.quantity_unit = entity.quantity_unit
        model.min_quantity = entity.min_quantity
        model.max_quantity = entity.max_quantity
        model.duration_days = entity.duration_days
        model.is_active = entity.is_active
        model.extra_metadata = entity.metadata

    async def get_by_id(self, item_id: int) -> Optional[CatalogItem]:
        result = await self.session.execute(
            select(CatalogItemModel).where(CatalogItemModel.id == item_id)
        )
        db_item = result.scalar_one_or_none()
        return self._to_entity(db_item) if db_item else None

    async def _get_model(self, provider: str, provider_item_id: str) -> Optional[CatalogItemModel]:
        result = await self.session.execute(
            select(CatalogItemModel).where(
                CatalogItemModel.provider == provider,
                CatalogItemModel.provider_item_id == provider_item_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_provider_item(self, provider: str, provider_item_id: str) -> Optional[CatalogItem]:
        db_item = await self._get_model(provider, provider_item_id)
        return self._to_entity(db_item) if db_item else None

    async def find_for_selector(
        self,
        provider: str,
        kind: ItemKind,
        country: Optional[str],
        product: Optional[str],
    ) -> Optional[CatalogItem]:
        query = select(CatalogItemModel).where(
            CatalogItemModel.provider == provider,
            CatalogItemModel.kind == kind.value,
            CatalogItemModel.is_active.is_(True),
        )
        if country:
            query = query.where(CatalogItemModel.country == country)
        if product:
            query = query.where(CatalogItemModel.product == product)
        query = query.order_by(CatalogItemModel.selling_price.asc(), CatalogItemModel.id.asc()).limit(1)

        result = await self.session.execute(query)
        db_item = result.scalar_one_or_none()
        return self._to_entity(db_item) if db_item else None

    async def list_active(
        self,
        kind: Optional[ItemKind] = None,
        provider: Optional[str] = None,
        skip: int = 0,
        limit: int = 500,
    ) -> List[CatalogItem]:
        query = select(CatalogItemModel).where(CatalogItemModel.is_active.is_(True))
        if kind:
            query = query.where(CatalogItemModel.kind == kind.value)
        if provider:
            query = query.where(CatalogItemModel.provider == provider)
        query = query.order_by(CatalogItemModel.id.asc()).offset(skip).limit(limit)

        result = await self.session.execute(query)
        return [self._to_entity(i) for i in result.scalars().all()]

    async def upsert(self, item: CatalogItem) -> CatalogItem:
        db_item = await self._get_model(item.provider, item.provider_item_id)
        created = db_item is None
        if created:
            db_item = CatalogItemModel()
            self.session.add(db_item)
        self._apply(db_item, item)
        await self.session.flush()
        await self.session.refresh(db_item)
        logger.debug(
            "catalog_item_upserted",
            item_id=db_item.id,
            provider=item.provider,
            provider_item_id=item.provider_item_id,
            created=created,
        )
        return self._to_entity(db_item)

    async def update_price(self, item: CatalogItem) -> CatalogItem:
        result = await self.session.execute(
            select(CatalogItemModel).where(CatalogItemModel.id == item.id)
        )
        db_item = result.scalar_one_or_none()
        if not db_item:
            raise ValueError(f"Catalog item with id {item.id} not found")

        db_item.selling_price = item.selling_price
        db_item.updated_at = item.updated_at or utcnow()
        await self.session.flush()
        await self.session.refresh(db_item)
        return self._to_entity(db_item)
