from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from ..utils.runtime import run_with_container


@shared_task(name="maintenance.purge_idempotency_keys", base=BaseTask)
def purge_idempotency_keys() -> int:
    """Delete idempotency records past their expiry."""
    return run_with_container(lambda c: c.idempotency.purge_expired())
