"""
Domain events.

Dataclass events record important lifecycle facts for downstream handling
(outbox → messaging). Domain remains free of infrastructure imports and the
payload only carries domain fields, never raw provider payloads.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
import uuid


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    aggregate_type: str
    aggregate_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def envelope(self) -> dict[str, Any]:
        """Wire envelope: eventId, eventType, timestamp, aggregateId, payload."""
        return {
            "eventId": self.event_id,
            "eventType": self.event_type,
            "timestamp": self.occurred_at.isoformat().replace("+00:00", "Z"),
            "aggregateId": self.aggregate_id,
            "payload": self.payload,
        }
