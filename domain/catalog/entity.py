"""
目录领域实体 - 可购买的上游商品（号码、eSIM 套餐、SMM 服务）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException


class ItemKind(str, Enum):
    PHONE_NUMBER = "phone_number"
    ESIM = "esim"
    SMM = "smm"


@dataclass
class CatalogItem:
    """
    目录条目

    业务规则：
    1. 售价由批发价、汇率与加价率计算得出，汇率或加价率变化时需重算
    2. 按数量计价的条目（SMM）订购数量必须在 [min_quantity, max_quantity] 内
    3. 停用的条目不可购买
    """

    id: Optional[int]
    kind: ItemKind
    provider: str
    provider_item_id: str
    name: str
    wholesale_cost: Decimal
    selling_price: Decimal
    wholesale_currency: str = "USD"
    country: Optional[str] = None
    product: Optional[str] = None
    operator: Optional[str] = None
    available: Optional[int] = None
    # Price unit: 1 for per-item goods, 1000 for per-thousand SMM rates.
    quantity_unit: int = 1
    min_quantity: int = 1
    max_quantity: int = 1
    duration_days: Optional[int] = None
    is_active: bool = True
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.wholesale_cost < 0 or self.selling_price < 0:
            raise DomainValidationException("价格不能为负数", field="selling_price")
        if self.quantity_unit <= 0:
            raise DomainValidationException("计价单位必须大于0", field="quantity_unit")
        if self.min_quantity > self.max_quantity:
            raise DomainValidationException(
                f"最小数量 {self.min_quantity} 大于最大数量 {self.max_quantity}",
                field="min_quantity",
            )
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        if self.metadata is None:
            self.metadata = {}

    def ensure_purchasable(self, quantity: int) -> None:
        """校验条目可购买且数量合法"""
        if not self.is_active:
            raise DomainValidationException(
                f"Catalog item {self.id} is not active",
                field="item_id",
                message_key="catalog.item.inactive",
            )
        if quantity < self.min_quantity or quantity > self.max_quantity:
            raise DomainValidationException(
                f"Quantity must be between {self.min_quantity} and {self.max_quantity}",
                field="quantity",
                details={"min": self.min_quantity, "max": self.max_quantity, "quantity": quantity},
                message_key="catalog.quantity.out_of_range",
            )

    def total_price(self, quantity: int = 1) -> Decimal:
        """按锁定售价计算总价"""
        total = self.selling_price * Decimal(quantity) / Decimal(self.quantity_unit)
        return total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def apply_price(self, selling_price: Decimal) -> bool:
        """更新售价，返回是否发生变化"""
        if selling_price == self.selling_price:
            return False
        self.selling_price = selling_price
        self.updated_at = utcnow()
        return True

    def snapshot(self) -> dict:
        """下单时复制的条目快照，后续目录变更不影响历史订单"""
        return {
            "item_id": self.id,
            "kind": self.kind.value,
            "provider": self.provider,
            "provider_item_id": self.provider_item_id,
            "name": self.name,
            "country": self.country,
            "product": self.product,
            "operator": self.operator,
            "selling_price": str(self.selling_price),
            "wholesale_cost": str(self.wholesale_cost),
            "wholesale_currency": self.wholesale_currency,
            "quantity_unit": self.quantity_unit,
            "duration_days": self.duration_days,
        }
