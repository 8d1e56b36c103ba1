"""Bridges the outbox relay's async ``EventPublisher`` port to a blocking Publisher."""
from __future__ import annotations

import asyncio
from typing import Any, Mapping

from .base import Envelope, PublishResult, Publisher


class MessagingEventPublisher:
    def __init__(self, publisher: Publisher) -> None:
        self._publisher = publisher

    async def publish(self, topic: str, key: str, message: Mapping[str, Any]) -> PublishResult:
        headers = {
            "x-event-id": str(message.get("eventId", "")).encode("utf-8"),
            "x-event-type": str(message.get("eventType", "")).encode("utf-8"),
        }
        env = Envelope(payload=dict(message), key=key.encode("utf-8"), headers=headers)
        # raises PublishError on a missing delivery report; the relay keeps the entry
        return await asyncio.to_thread(self._publisher.publish, topic, env)

    def close(self) -> None:
        self._publisher.close()
