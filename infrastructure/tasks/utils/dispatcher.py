"""Schedules worker tasks from the API process without importing the task modules."""
from __future__ import annotations

from core.logging_config import get_logger

from ..config.celery import celery_app


logger = get_logger(__name__)


class TaskDispatcher:
    def process_webhook_event(self, event_id: str) -> None:
        """Used as the webhook service's dispatcher when inline processing is off."""
        celery_app.send_task("webhooks.process_event", kwargs={"event_id": event_id})
        logger.debug("webhook_event_dispatched", event_id=event_id)
