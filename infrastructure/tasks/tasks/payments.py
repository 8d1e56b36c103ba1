from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from ..utils.runtime import run_with_container


@shared_task(name="payments.reconcile_stale", base=BaseTask)
def reconcile_stale() -> int:
    """Verify payments stuck in PENDING/PROCESSING; fail the ones past the deadline."""
    return run_with_container(lambda c: c.payments.reconcile_stale())


@shared_task(name="payments.verify", base=BaseTask)
def verify_payment(payment_id: str) -> str:
    view = run_with_container(lambda c: c.payments.verify_payment(payment_id))
    return view.status
