"""
Status reconciliation and chunked pagination.

`StatusReconciler` re-reads provider state for committed orders and merges it
without ever overwriting fulfilment already stored. `fetch_all_pages` walks a
paginated remote listing in bounded chunks with per-chunk retries.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from application.dtos.providers import CatalogPage
from application.services.provider_registry import ProviderRegistry
from core.logging_config import get_logger
from domain.common.exceptions import OrderNotFoundException, ProviderUnavailableException
from domain.order.entity import CANCELLABLE_STATUSES, Order, SagaState
from domain.wallet.entity import new_reference
from domain.wallet.service import WalletDomainService


logger = get_logger(__name__)

FetchPage = Callable[[int, int], Awaitable[CatalogPage]]


@dataclass(frozen=True)
class FetchProgress:
    fetched: int
    total: Optional[int]
    percentage: float


@dataclass
class BulkFetchResult:
    items: List[Any] = field(default_factory=list)
    complete: bool = True
    total: Optional[int] = None
    aborted: bool = False
    error: Optional[str] = None

    @property
    def fetched(self) -> int:
        return len(self.items)


def should_stop(received: int, requested: int, offset: int, total: Optional[int]) -> bool:
    """
    Pagination stop predicate.

    `offset` is the number of items consumed so far. A short (or empty) page
    always ends the walk; a known total ends it once reached. With no total
    the walk continues until a short page.
    """
    if received <= 0 or received < requested:
        return True
    return total is not None and offset >= total


async def fetch_all_pages(
    fetch_page: FetchPage,
    page_size: int = 50,
    max_chunk_retries: int = 2,
    retry_delay: float = 2.0,
    chunk_delay: float = 0.5,
    on_progress: Optional[Callable[[FetchProgress], Optional[bool]]] = None,
) -> BulkFetchResult:
    """
    Accumulate every page of a remote listing.

    Transient chunk failures are retried up to `max_chunk_retries` times; once
    exhausted the accumulated items are returned with `complete=False`. The
    total reported by the first page is trusted for the rest of the walk.
    `on_progress` returning False aborts.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    result = BulkFetchResult()
    offset = 0
    retries = 0

    while True:
        try:
            page = await fetch_page(page_size, offset)
        except ProviderUnavailableException as exc:
            retries += 1
            if retries <= max_chunk_retries:
                logger.warning("chunk_fetch_retry", offset=offset, retry=retries, error=exc.message)
                await asyncio.sleep(retry_delay)
                continue
            logger.warning("chunk_fetch_exhausted", offset=offset, fetched=result.fetched, error=exc.message)
            result.complete = False
            result.error = exc.message
            return result
        except Exception as exc:
            logger.warning("chunk_fetch_failed", offset=offset, fetched=result.fetched, error=str(exc))
            result.complete = False
            result.error = getattr(exc, "message", None) or str(exc)
            return result

        retries = 0
        received = len(page.items)
        if received == 0:
            break

        result.items.extend(page.items)
        offset += received
        if result.total is None:
            result.total = page.total

        total = result.total
        progress = FetchProgress(
            fetched=result.fetched,
            total=total,
            percentage=round(result.fetched / total * 100, 1) if total else 0.0,
        )
        logger.info("chunk_fetch_progress", fetched=progress.fetched, total=total, percentage=progress.percentage)
        if on_progress is not None and on_progress(progress) is False:
            result.aborted = True
            result.complete = False
            logger.info("chunk_fetch_aborted", fetched=result.fetched)
            return result

        if should_stop(received, page_size, offset, total):
            break
        if chunk_delay:
            await asyncio.sleep(chunk_delay)

    return result


class StatusReconciler:
    """订单状态对账（幂等）"""

    def __init__(self, uow_factory: Callable[..., Any], registry: ProviderRegistry) -> None:
        self._uow_factory = uow_factory
        self._registry = registry

    async def refresh(self, order_id: int) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if order.saga_state != SagaState.COMMITTED or not order.provider_order_id:
            return order

        adapter = self._registry.get(order.provider)
        provider_order = await adapter.query_order(order.provider_order_id)

        async with self._uow_factory() as uow:
            # A cancel may have settled the order while the provider was queried.
            current = await uow.order_repository.get_by_id(order_id)
            previous = current.status
            changed = current.apply_provider_state(
                provider_status=provider_order.raw_status,
                status=provider_order.status,
                fulfillment=provider_order.fulfillment,
                expires_at=provider_order.expires_at,
            )
            if not changed:
                logger.debug("order_refresh_unchanged", order_id=current.id, provider_status=current.provider_status)
                return current

            refund_due = current.refund_due(previous)
            if refund_due:
                current.mark_auto_refunded()
            if not await uow.order_repository.compare_and_update(current, expected=(previous,)):
                logger.info("order_refresh_superseded", order_id=current.id, status=previous.value)
                return await uow.order_repository.get_by_id(order_id)
            if refund_due:
                credit = await WalletDomainService(uow.wallet_repository, uow.ledger_repository).credit(
                    current.user_id,
                    current.price,
                    reference=new_reference("REFUND"),
                    order_reference=current.reference,
                    description=f"Auto-refund for {current.status.value} order {current.reference}",
                )
                logger.info(
                    "order_auto_refunded",
                    order_id=current.id,
                    status=current.status.value,
                    refund_reference=credit.reference,
                    amount=str(current.price),
                )
            current = await uow.order_repository.get_by_id(order_id)

        logger.info(
            "order_refreshed",
            order_id=current.id,
            provider=current.provider,
            provider_status=current.provider_status,
            status=current.status.value,
        )
        return current

    async def refresh_pending(self, limit: int = 100) -> dict[str, int]:
        """Refresh committed pending/processing orders; one failure never stops the batch."""
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_for_reconcile(CANCELLABLE_STATUSES, limit)

        summary = {"checked": 0, "updated": 0, "failed": 0}
        for order in orders:
            summary["checked"] += 1
            before = (order.provider_status, order.status, order.updated_at)
            try:
                refreshed = await self.refresh(order.id)
            except Exception as exc:
                summary["failed"] += 1
                logger.warning("order_refresh_failed", order_id=order.id, provider=order.provider, error=str(exc))
                continue
            if (refreshed.provider_status, refreshed.status, refreshed.updated_at) != before:
                summary["updated"] += 1

        logger.info("pending_orders_refreshed", **summary)
        return summary
