"""Background jobs: order reconciliation, stale-saga recovery, catalog sync.

Importing this package configures the Celery app; callers schedule work
through `TaskDispatcher` and never import task functions directly.
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
