"""
Selling price computation.

All money is Decimal; rounding happens once, at the end, to two places
(half-up) so repeated repricing never drifts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping

from domain.catalog.entity import ItemKind
from domain.common.exceptions import DomainValidationException

CENT = Decimal("0.01")
# Upper bound of the selling price column (Numeric(15, 2) in practice, but the
# SMM catalogue historically capped at 8 integer digits).
MAX_SELLING_PRICE = Decimal("99999999.99")


def quantize_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingConfig:
    """FX rate and markup percentages in effect for one pricing pass."""

    fx_rate: Decimal
    currency: str = "NGN"
    markups: Mapping[ItemKind, Decimal] = field(default_factory=dict)

    def __post_init__(self):
        if self.fx_rate <= 0:
            raise DomainValidationException(
                f"FX rate must be positive: {self.fx_rate}",
                field="fx_rate",
            )

    def markup_for(self, kind: ItemKind) -> Decimal:
        return Decimal(self.markups.get(kind, Decimal("0")))


@dataclass(frozen=True)
class PriceBreakdown:
    wholesale_local: Decimal
    selling_price: Decimal
    markup_percent: Decimal

    @property
    def profit(self) -> Decimal:
        return self.selling_price - self.wholesale_local


def compute_price(wholesale: Decimal, kind: ItemKind, config: PricingConfig) -> PriceBreakdown:
    """selling = wholesale × fx_rate × (1 + markup/100)"""
    if wholesale < 0:
        raise DomainValidationException(
            f"Wholesale cost cannot be negative: {wholesale}",
            field="wholesale_cost",
        )
    markup = config.markup_for(kind)
    local = Decimal(wholesale) * config.fx_rate
    selling = quantize_money(local * (Decimal("1") + markup / Decimal("100")))
    if selling > MAX_SELLING_PRICE:
        selling = MAX_SELLING_PRICE
    return PriceBreakdown(
        wholesale_local=quantize_money(local),
        selling_price=selling,
        markup_percent=markup,
    )
