"""
Event publisher port used by the outbox relay.

``publish`` returns only after the transport acknowledged the message and
raises on any delivery failure.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, topic: str, key: str, message: Mapping[str, Any]) -> None: ...
