"""Order reconciliation and saga recovery tasks"""
from __future__ import annotations

from datetime import timedelta

from celery import shared_task

from ..utils.base_task import BaseTask
from ._runner import run_with_services
from core.logging_config import get_logger
from domain.common.exceptions import ProviderUnavailableException

logger = get_logger(__name__)


@shared_task(
    name="orders.refresh_status",
    bind=True,
    base=BaseTask,
    autoretry_for=(ProviderUnavailableException,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def refresh_status(self, order_id: int) -> dict:
    """Re-query the provider for one order."""
    order = run_with_services(lambda s: s.reconciler.refresh(order_id))
    return {
        "order_id": order.id,
        "status": order.status.value,
        "provider_status": order.provider_status,
    }


@shared_task(name="orders.refresh_pending", bind=True, base=BaseTask)
def refresh_pending(self, limit: int = 100) -> dict:
    return run_with_services(lambda s: s.reconciler.refresh_pending(limit))


@shared_task(name="orders.recover_stale", bind=True, base=BaseTask)
def recover_stale(self, older_than_seconds: int = 600) -> dict:
    """Finish purchase sagas left in `reserved` by a crash or lost response."""
    summary = run_with_services(
        lambda s: s.purchases.recover_stale(timedelta(seconds=older_than_seconds))
    )
    if summary.get("flagged"):
        logger.warning("stale_sagas_need_manual_review", flagged=summary["flagged"])
    return summary
