"""
目录数据库模型 - SQLAlchemy ORM模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, JSON, Index, UniqueConstraint
from datetime import datetime, timezone

from .base import Base


class CatalogItemModel(Base):
    """
    目录条目模型

    (provider, provider_item_id) 唯一；售价在同步或重算时写入
    """
    __tablename__ = "catalog_items"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(20), nullable=False, index=True, comment="类型: phone_number/esim/smm")
    provider = Column(String(50), nullable=False, index=True, comment="提供商标识")
    provider_item_id = Column(String(200), nullable=False, comment="提供商原生ID")
    name = Column(String(500), nullable=False, comment="名称")

    wholesale_cost = Column(Numeric(precision=15, scale=4), nullable=False, comment="批发价（提供商货币）")
    wholesale_currency = Column(String(3), nullable=False, default="USD", comment="批发价货币")
    selling_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="售价（本地货币）")

    country = Column(String(50), nullable=True, index=True, comment="国家")
    product = Column(String(100), nullable=True, index=True, comment="产品/服务")
    operator = Column(String(100), nullable=True, comment="运营商")
    available = Column(Integer, nullable=True, comment="库存，空表示不限")

    quantity_unit = Column(Integer, nullable=False, default=1, comment="计价单位")
    min_quantity = Column(Integer, nullable=False, default=1, comment="最小数量")
    max_quantity = Column(Integer, nullable=False, default=1, comment="最大数量")
    duration_days = Column(Integer, nullable=True, comment="有效天数")
    is_active = Column(Boolean, nullable=False, default=True, index=True, comment="是否可售")

    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        UniqueConstraint("provider", "provider_item_id", name="uq_catalog_items_provider_item"),
        Index("ix_catalog_items_selector", "provider", "kind", "country", "product"),
    )

    def __repr__(self):
        return (
            f"<CatalogItemModel(id={self.id}, provider='{self.provider}', "
            f"provider_item_id='{self.provider_item_id}', selling_price={self.selling_price})>"
        )
