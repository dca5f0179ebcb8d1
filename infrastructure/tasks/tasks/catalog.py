"""Catalog synchronisation tasks"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from ._runner import run_with_services


@shared_task(
    name="catalog.sync",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def sync_catalog(self, provider: str) -> dict:
    """Pull the provider's full listing and upsert priced catalog items."""
    return run_with_services(lambda s: s.catalog.sync_provider(provider))


@shared_task(name="catalog.reprice", bind=True, base=BaseTask)
def reprice_catalog(self) -> dict:
    """Recompute selling prices after an FX rate or markup change."""
    changed = run_with_services(lambda s: s.catalog.reprice_all())
    return {"changed": changed}
