"""Common base task for Celery jobs"""
from __future__ import annotations

from celery import Task
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException

logger = get_logger(__name__)


def _error_fields(exc: BaseException) -> dict:
    """Business errors carry a code and, for provider failures, the provider id."""
    fields = {"exc": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, BusinessException):
        fields["code"] = int(exc.code)
        provider = getattr(exc, "provider", None)
        if provider:
            fields["provider"] = provider
        reference = getattr(exc, "reference", None)
        if reference:
            fields["reference"] = reference
    return fields


class BaseTask(Task):
    """Structured logging for reconciliation and catalog jobs."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            args=args,
            kwargs=kwargs,
            **_error_fields(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            **_error_fields(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            result=retval if isinstance(retval, dict) else None,
        )
        super().on_success(retval, task_id, args, kwargs)
