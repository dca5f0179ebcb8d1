"""PricingConfigProvider backed by application settings."""
from __future__ import annotations

from typing import Optional

from core.config import PricingSettings, settings
from domain.catalog.entity import ItemKind
from domain.catalog.pricing import PricingConfig


class SettingsPricingConfigProvider:
    """Builds a PricingConfig from settings on each call so env reloads apply."""

    def __init__(self, pricing: Optional[PricingSettings] = None) -> None:
        self._pricing = pricing

    async def current(self) -> PricingConfig:
        pricing = self._pricing or settings.pricing
        return PricingConfig(
            fx_rate=pricing.fx_rate,
            currency=pricing.currency,
            markups={
                ItemKind.PHONE_NUMBER: pricing.phone_markup,
                ItemKind.ESIM: pricing.esim_markup,
                ItemKind.SMM: pricing.smm_markup,
            },
        )
