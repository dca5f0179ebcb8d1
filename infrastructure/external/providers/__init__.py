"""
Provider registration table.

Adapters are listed once here, in priority order; the registry uses that order
to break selection ties.
"""
from __future__ import annotations

from typing import Optional

from application.ports.cache import Cache
from application.services.provider_registry import ProviderRegistry
from core.config import settings
from infrastructure.external.api_clients import CallObserver

from .base import BaseProviderAdapter
from .fivesim import FiveSimAdapter
from .grizzly import GrizzlySmsAdapter
from .jap import JapAdapter
from .zendit import ZenditAdapter


PROVIDER_CLASSES: tuple[type[BaseProviderAdapter], ...] = (
    FiveSimAdapter,
    GrizzlySmsAdapter,
    ZenditAdapter,
    JapAdapter,
)


def build_adapters(observer: Optional[CallObserver] = None) -> list[BaseProviderAdapter]:
    return [cls(observer=observer) for cls in PROVIDER_CLASSES]


def build_registry(
    cache: Optional[Cache] = None,
    observer: Optional[CallObserver] = None,
) -> ProviderRegistry:
    return ProviderRegistry(
        build_adapters(observer),
        cache=cache,
        default_provider=settings.registry.default_provider,
        price_ttl=settings.registry.price_cache_ttl,
        country_ttl=settings.registry.country_cache_ttl,
    )


__all__ = [
    "BaseProviderAdapter",
    "FiveSimAdapter",
    "GrizzlySmsAdapter",
    "JapAdapter",
    "ZenditAdapter",
    "PROVIDER_CLASSES",
    "build_adapters",
    "build_registry",
]
