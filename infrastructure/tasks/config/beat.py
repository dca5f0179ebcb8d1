"""Celery beat schedule configuration.

Status reconciliation is poll-based: pending orders are refreshed on a short
interval, interrupted purchase sagas are swept every few minutes and catalogs
are re-synced hourly.
"""
from __future__ import annotations

from core.config import settings


# Providers whose listing endpoint feeds the local catalog.
CATALOG_PROVIDERS = ("zendit", "jap")


CELERY_BEAT_SCHEDULE = {
    "orders-refresh-pending": {
        "task": "orders.refresh_pending",
        "schedule": settings.reconcile.interval_seconds,
        "kwargs": {"limit": settings.reconcile.batch_size},
    },
    "orders-recover-stale": {
        "task": "orders.recover_stale",
        "schedule": 300,
        "kwargs": {"older_than_seconds": settings.reconcile.stale_after_seconds},
    },
    **{
        f"catalog-sync-{provider}": {
            "task": "catalog.sync",
            "schedule": 3600,
            "args": [provider],
        }
        for provider in CATALOG_PROVIDERS
    },
}
