"""
Provider registry and aggregator.

Holds the registration table of adapters (built once at start-up), fans price
and availability queries out to every enabled adapter concurrently, and picks
one provider under a selection policy. Aggregated results are cached, but an
empty aggregate is never cached so an all-provider outage heals on the next
request.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from statistics import mean
from typing import Any, Iterable, Optional, Sequence

from application.dtos.providers import Country, PriceQuote, ProviderBalance, Selector
from application.ports.cache import Cache
from application.ports.provider import FulfillmentProvider
from core.logging_config import get_logger
from domain.catalog.entity import ItemKind
from domain.common.exceptions import ProviderNotAvailableException


logger = get_logger(__name__)


class SelectionPolicy(str, Enum):
    CHEAPEST = "cheapest"
    MOST_AVAILABLE = "most_available"
    HIGHEST_SUCCESS = "highest_success"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: "SelectionPolicy | str") -> Optional["SelectionPolicy"]:
        try:
            return cls(value)
        except ValueError:
            return None


def _total_available(quotes: Sequence[PriceQuote]) -> float:
    total = 0.0
    for quote in quotes:
        if quote.available_count is None:
            return float("inf")
        total += max(quote.available_count, 0)
    return total


def _min_cost(quotes: Sequence[PriceQuote]) -> Any:
    return min(q.cost for q in quotes if q.is_available)


def _avg_success(quotes: Sequence[PriceQuote]) -> float:
    rates = [q.success_rate for q in quotes if q.success_rate is not None]
    return mean(rates) if rates else 0.0


class ProviderRegistry:
    """Registration table plus fan-out/fan-in aggregation."""

    def __init__(
        self,
        adapters: Iterable[FulfillmentProvider],
        *,
        cache: Optional[Cache] = None,
        default_provider: Optional[str] = None,
        price_ttl: int = 300,
        country_ttl: int = 3600,
    ) -> None:
        self._adapters: dict[str, FulfillmentProvider] = {}
        for adapter in adapters:
            if not isinstance(adapter, FulfillmentProvider):
                raise TypeError(f"{adapter!r} does not implement FulfillmentProvider")
            if adapter.identifier in self._adapters:
                raise ValueError(f"Duplicate provider registration: {adapter.identifier}")
            self._adapters[adapter.identifier] = adapter
        if default_provider is not None and default_provider not in self._adapters:
            raise ValueError(f"Default provider {default_provider!r} is not registered")
        self.default_provider = default_provider
        self._cache = cache
        self._price_ttl = price_ttl
        self._country_ttl = country_ttl

    # Registration table

    @property
    def identifiers(self) -> list[str]:
        return list(self._adapters)

    def get(self, identifier: str) -> FulfillmentProvider:
        adapter = self._adapters.get(identifier)
        if adapter is None:
            raise ProviderNotAvailableException(identifier, reason=f"Provider {identifier} is not registered")
        return adapter

    def enabled(self, kind: Optional[ItemKind] = None) -> list[FulfillmentProvider]:
        """Enabled adapters in registration order; evaluated on every call."""
        return [
            a for a in self._adapters.values()
            if a.is_enabled() and (kind is None or a.kind == kind)
        ]

    # Aggregation

    async def _gather_availability(
        self,
        adapters: Sequence[FulfillmentProvider],
        selector: Selector,
    ) -> list[tuple[FulfillmentProvider, list[PriceQuote]]]:
        results = await asyncio.gather(
            *(a.get_availability(selector) for a in adapters),
            return_exceptions=True,
        )
        collected: list[tuple[FulfillmentProvider, list[PriceQuote]]] = []
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "registry_provider_failed",
                    provider=adapter.identifier,
                    selector=selector.cache_key(),
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            collected.append((adapter, list(result)))
        return collected

    async def get_aggregated_prices(self, selector: Selector) -> list[PriceQuote]:
        """Sorted union of every enabled adapter's quotes for the selector."""
        cache_key = f"prices:{selector.cache_key()}"
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached:
                return [PriceQuote.model_validate(q) for q in cached]

        adapters = self.enabled(selector.kind)
        merged: list[PriceQuote] = []
        for adapter, quotes in await self._gather_availability(adapters, selector):
            merged.extend(q.model_copy(update={"provider": adapter.identifier}) for q in quotes)

        # sort is stable: equal costs keep registration order
        merged.sort(key=lambda q: q.cost)

        logger.info(
            "registry_prices_aggregated",
            selector=selector.cache_key(),
            providers=len(adapters),
            quotes=len(merged),
        )
        if merged and self._cache is not None:
            await self._cache.set(
                cache_key,
                [q.model_dump(mode="json") for q in merged],
                ttl=self._price_ttl,
            )
        return merged

    async def select_best_provider(
        self,
        selector: Selector,
        policy: SelectionPolicy | str = SelectionPolicy.CHEAPEST,
    ) -> Optional[FulfillmentProvider]:
        """Pick one enabled adapter for the selector, or None when none qualifies."""
        parsed = SelectionPolicy.parse(policy)

        if parsed == SelectionPolicy.DEFAULT:
            if self.default_provider is None:
                return None
            adapter = self._adapters[self.default_provider]
            if adapter.is_enabled() and adapter.kind == selector.kind:
                return adapter
            return None

        candidates = [
            (adapter, quotes)
            for adapter, quotes in await self._gather_availability(self.enabled(selector.kind), selector)
            if quotes and _total_available(quotes) > 0
        ]
        if not candidates:
            logger.info("registry_no_candidate", selector=selector.cache_key(), policy=getattr(policy, "value", policy))
            return None

        # min()/max() return the first of equal keys: registration order breaks ties
        if parsed == SelectionPolicy.CHEAPEST:
            chosen = min(candidates, key=lambda c: _min_cost(c[1]))
        elif parsed == SelectionPolicy.MOST_AVAILABLE:
            chosen = max(candidates, key=lambda c: _total_available(c[1]))
        elif parsed == SelectionPolicy.HIGHEST_SUCCESS:
            chosen = max(candidates, key=lambda c: _avg_success(c[1]))
        else:
            chosen = candidates[0]

        logger.info(
            "registry_provider_selected",
            selector=selector.cache_key(),
            policy=getattr(policy, "value", policy),
            provider=chosen[0].identifier,
        )
        return chosen[0]

    async def check_all_balances(self) -> list[ProviderBalance]:
        """Balance of every registered adapter; failures are reported, not raised."""
        adapters = list(self._adapters.values())

        async def _one(adapter: FulfillmentProvider) -> ProviderBalance:
            if not adapter.is_enabled():
                return ProviderBalance(
                    provider=adapter.identifier, success=False, enabled=False, message="Provider disabled"
                )
            try:
                return await adapter.get_balance()
            except Exception as exc:
                logger.warning("registry_balance_failed", provider=adapter.identifier, error=str(exc))
                return ProviderBalance(provider=adapter.identifier, success=False, message=str(exc))

        balances = await asyncio.gather(*(_one(a) for a in adapters))
        return list(balances)

    async def get_countries(self, kind: ItemKind = ItemKind.PHONE_NUMBER) -> list[Country]:
        """Countries from the default provider, else the union of all providers."""
        cache_key = f"countries:{kind.value}"
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached:
                return [Country.model_validate(c) for c in cached]

        countries: list[Country] = []
        default = self._adapters.get(self.default_provider) if self.default_provider else None
        if default is not None and default.is_enabled() and default.kind == kind:
            try:
                countries = await default.get_countries()
            except Exception as exc:
                logger.warning("registry_countries_failed", provider=default.identifier, error=str(exc))

        if not countries:
            adapters = self.enabled(kind)
            results = await asyncio.gather(*(a.get_countries() for a in adapters), return_exceptions=True)
            by_code: dict[str, Country] = {}
            for adapter, result in zip(adapters, results):
                if isinstance(result, Exception):
                    logger.warning("registry_countries_failed", provider=adapter.identifier, error=str(result))
                    continue
                for country in result:
                    by_code.setdefault(country.code, country)
            countries = sorted(by_code.values(), key=lambda c: c.name)

        if countries and self._cache is not None:
            await self._cache.set(
                cache_key,
                [c.model_dump(mode="json") for c in countries],
                ttl=self._country_ttl,
            )
        return countries

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
