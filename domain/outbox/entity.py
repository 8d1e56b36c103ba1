"""
Outbox 实体 - 与聚合变更同一事务写入，由 relay 异步投递
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from domain.common.events import DomainEvent
from domain.common.timeutils import ensure_utc


@dataclass
class OutboxEntry:
    """
    待投递事件

    业务规则：
    1. event_id 唯一
    2. 同一聚合按 id（写入顺序）投递
    3. 只有收到传输层确认后才设置 published_at
    """

    event_id: str
    event_type: str
    aggregate_type: str
    aggregate_id: str
    payload: dict[str, Any]
    occurred_at: datetime
    id: Optional[int] = None
    published_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None
    claimed_by: Optional[str] = None
    claimed_until: Optional[datetime] = None

    def __post_init__(self):
        self.occurred_at = ensure_utc(self.occurred_at)
        self.published_at = ensure_utc(self.published_at)
        self.claimed_until = ensure_utc(self.claimed_until)

    @classmethod
    def from_event(cls, event: DomainEvent) -> "OutboxEntry":
        return cls(
            event_id=event.event_id,
            event_type=event.event_type,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            payload=dict(event.payload),
            occurred_at=event.occurred_at,
        )

    @property
    def published(self) -> bool:
        return self.published_at is not None

    def envelope(self) -> dict[str, Any]:
        """投递格式：eventId, eventType, timestamp, aggregateId, payload"""
        return {
            "eventId": self.event_id,
            "eventType": self.event_type,
            "timestamp": self.occurred_at.isoformat().replace("+00:00", "Z"),
            "aggregateId": self.aggregate_id,
            "payload": self.payload,
        }
