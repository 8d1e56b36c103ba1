"""Base class for the paysync Celery tasks."""
from __future__ import annotations

from celery import Task

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrencyConflictException, ProviderTransientError

logger = get_logger(__name__)


class BaseTask(Task):
    """Retries transient provider failures and exhausted version conflicts with backoff.

    Business outcomes (a declined payment, a dead webhook) are recorded by the
    services themselves and are not retried here.
    """

    autoretry_for = (ProviderTransientError, ConcurrencyConflictException)
    retry_backoff = 2
    retry_backoff_max = 300
    retry_jitter = True
    max_retries = 5

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "task_retrying",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "task_failed",
            task_id=task_id,
            task_name=self.name,
            kwargs=kwargs,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("task_succeeded", task_id=task_id, task_name=self.name, result=retval)
        super().on_success(retval, task_id, args, kwargs)
