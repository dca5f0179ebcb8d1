"""
Pricing configuration port.

The current FX rate and markups are fetched through an injected provider
instead of being read from global settings at the point of use.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.catalog.pricing import PricingConfig


@runtime_checkable
class PricingConfigProvider(Protocol):
    async def current(self) -> PricingConfig: ...
