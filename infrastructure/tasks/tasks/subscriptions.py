from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from ..utils.runtime import run_with_container


@shared_task(name="subscriptions.materialize_period_end", base=BaseTask)
def materialize_period_end() -> int:
    return run_with_container(lambda c: c.subscriptions.materialize_period_end())


@shared_task(name="subscriptions.expire_incomplete", base=BaseTask)
def expire_incomplete() -> int:
    return run_with_container(lambda c: c.subscriptions.expire_incomplete())


@shared_task(name="subscriptions.end_trials", base=BaseTask)
def end_trials() -> int:
    return run_with_container(lambda c: c.subscriptions.end_trials())
