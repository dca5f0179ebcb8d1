"""Celery app, queue routing and the periodic reconciliation schedule."""
from .beat import CELERY_BEAT_SCHEDULE
from .celery import QUEUES, TASK_ROUTES, celery_app

__all__ = ["celery_app", "CELERY_BEAT_SCHEDULE", "QUEUES", "TASK_ROUTES"]
