"""Celery application configuration"""
from __future__ import annotations

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


TASK_MODULES = (
    "infrastructure.tasks.tasks.orders",
    "infrastructure.tasks.tasks.catalog",
)

QUEUES = ("high", "default", "low")

# Stale-saga recovery releases reserved funds, so it never waits behind
# routine status polling or catalog syncs.
TASK_ROUTES = {
    "orders.recover_stale": {"queue": "high"},
    "orders.*": {"queue": "default"},
    "catalog.*": {"queue": "low"},
}

EAGER_ENVIRONMENTS = {"development", "dev", "test", "testing"}


def _always_eager() -> bool:
    if settings.celery.always_eager is not None:
        return settings.celery.always_eager
    return (settings.ENVIRONMENT or "production").lower() in EAGER_ENVIRONMENTS


celery_app = Celery("provider_orchestrator")

celery_app.conf.update(
    broker_url=settings.celery.broker_url or settings.redis.url,
    result_backend=settings.celery.result_backend or settings.redis.url,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A worker lost mid-reconcile re-delivers; refresh and recovery are idempotent.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=settings.celery.result_expires,
    worker_prefetch_multiplier=settings.celery.worker_prefetch_multiplier,
    task_default_queue="default",
    task_queues=tuple(Queue(name) for name in QUEUES),
    task_routes=TASK_ROUTES,
    task_always_eager=_always_eager(),
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=TASK_MODULES,
)


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        eager=sender.conf.task_always_eager,
        queues=list(QUEUES),
    )
