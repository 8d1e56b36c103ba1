from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from ..utils.runtime import run_with_container


@shared_task(name="webhooks.process_event", base=BaseTask)
def process_event(event_id: str) -> str:
    """Process one admitted webhook event. Handler failures are recorded on the event row."""
    status = run_with_container(lambda c: c.webhooks.process(event_id))
    return status.value


@shared_task(name="webhooks.retry_failed", base=BaseTask)
def retry_failed(limit: int = 100) -> int:
    return run_with_container(lambda c: c.webhooks.retry_failed(limit))
