from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from ..utils.runtime import run_with_container


@shared_task(name="outbox.drain", base=BaseTask, ignore_result=True)
def drain_outbox(max_batches: int = 10) -> int:
    """Publish committed outbox entries; returns how many were published."""
    return run_with_container(lambda c: c.relay.drain(max_batches))
