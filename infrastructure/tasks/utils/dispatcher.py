"""Send tasks by name so callers never import task modules (or Celery)."""
from __future__ import annotations

from typing import Any, Dict, Optional

from core.logging_config import get_logger
from ..config.celery import celery_app

logger = get_logger(__name__)


class TaskDispatcher:
    """TaskScheduler implementation backed by the Celery app."""

    def refresh_order_status(self, order_id: int, countdown: Optional[int] = None) -> None:
        """Re-query one order, optionally after `countdown` seconds."""
        options: Dict[str, Any] = {"kwargs": {"order_id": order_id}}
        if countdown:
            options["countdown"] = countdown
        celery_app.send_task("orders.refresh_status", **options)

    def sync_catalog(self, provider: str) -> None:
        celery_app.send_task("catalog.sync", args=(provider,))

    def recover_stale(self) -> None:
        celery_app.send_task("orders.recover_stale")

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        logger.debug("task_enqueued", task_name=task_name)
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
