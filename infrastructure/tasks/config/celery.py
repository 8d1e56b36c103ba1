"""Celery application for the consistency jobs.

Redis is the broker. Webhook processing and the outbox drain share the
``high`` queue so a backlog of scheduled sweeps never delays them.
"""
from __future__ import annotations

import os
from typing import Optional

from celery import Celery
from celery.signals import setup_logging
from kombu import Queue

from core.config import settings
from core.logging_config import configure_logging, get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_PACKAGES = ("infrastructure.tasks.tasks",)


def _broker_url() -> Optional[str]:
    return settings.redis.url or os.getenv("CELERY_BROKER_URL")


celery_app = Celery("paysync", include=list(TASK_PACKAGES))

celery_app.conf.update(
    broker_url=_broker_url(),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    broker_connection_retry_on_startup=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # ack after the work: a task lost with its worker is redelivered, every job is safe to repeat
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=120,
    task_time_limit=180,
    result_expires=3600,
    task_default_queue="default",
    task_queues=(Queue("high"), Queue("default"), Queue("low")),
    task_routes={
        "webhooks.*": {"queue": "high"},
        "outbox.*": {"queue": "high"},
        "payments.*": {"queue": "default"},
        "subscriptions.*": {"queue": "default"},
        "maintenance.*": {"queue": "low"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    # 连接此信号后 Celery 不再改写 root logger，沿用 structlog 处理链
    configure_logging()
    logger.info("celery_logging_configured", broker_configured=bool(_broker_url()))
