"""Celery beat schedule for the periodic consistency jobs.

Intervals are in seconds. Every job is safe to run concurrently with itself:
rows are claimed through version checks or outbox leases.
"""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    "outbox-drain": {
        "task": "outbox.drain",
        "schedule": 5.0,
    },
    "webhooks-retry-failed": {
        "task": "webhooks.retry_failed",
        "schedule": 60.0,
    },
    "payments-reconcile-stale": {
        "task": "payments.reconcile_stale",
        "schedule": 300.0,
    },
    "subscriptions-materialize-period-end": {
        "task": "subscriptions.materialize_period_end",
        "schedule": 300.0,
    },
    "subscriptions-expire-incomplete": {
        "task": "subscriptions.expire_incomplete",
        "schedule": 900.0,
    },
    "subscriptions-end-trials": {
        "task": "subscriptions.end_trials",
        "schedule": 900.0,
    },
    "maintenance-purge-idempotency-keys": {
        "task": "maintenance.purge_idempotency_keys",
        "schedule": crontab(minute=17),
    },
}
