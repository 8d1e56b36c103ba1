from __future__ import annotations

from core.logging_config import get_logger

from ..base import Envelope, PublishMiddleware, PublishResult


class LoggingMiddleware(PublishMiddleware):
    """Logs each outbox message with its event id so a delivery can be traced back to its row."""

    def __init__(self, logger_name: str = "paysync.outbox.publish") -> None:
        self.log = get_logger(logger_name)

    def before_publish(self, topic: str, env: Envelope) -> Envelope:  # type: ignore[override]
        self.log.debug(
            "event_publishing",
            topic=topic,
            aggregate_id=env.key_text,
            event_id=env.header("x-event-id"),
            event_type=env.header("x-event-type"),
        )
        return env

    def after_publish(self, topic: str, env: Envelope, result: PublishResult) -> None:  # type: ignore[override]
        self.log.info(
            "event_published",
            topic=topic,
            aggregate_id=env.key_text,
            event_id=env.header("x-event-id"),
            partition=result.partition,
            offset=result.offset,
        )
