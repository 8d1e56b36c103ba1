"""
Webhook 事件实体 - 每条渠道通知都先落库再处理
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import uuid

from domain.common.timeutils import ensure_utc, utcnow


class WebhookStatus(str, Enum):
    PENDING = "pending"      # 已接收，待处理
    PROCESSED = "processed"  # 处理成功
    FAILED = "failed"        # 处理失败，等待重试
    DEAD = "dead"            # 重试耗尽，永久失败


@dataclass
class WebhookEvent:
    """
    Webhook 事件

    业务规则：
    1. (provider, provider_event_id) 组合唯一，重复投递只确认不处理
    2. 签名校验通过后才会落库
    3. 处理失败 retry_count + 1，达到上限后标记为 DEAD
    """

    provider: str
    provider_event_id: str
    event_type: str
    payload: str
    signature: Optional[str] = None
    notification: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"whe_{uuid.uuid4().hex}")
    status: WebhookStatus = WebhookStatus.PENDING
    retry_count: int = 0
    processing_error: Optional[str] = None
    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        self.received_at = ensure_utc(self.received_at) or utcnow()
        self.processed_at = ensure_utc(self.processed_at)

    @property
    def processed(self) -> bool:
        return self.status == WebhookStatus.PROCESSED

    def mark_processed(self, now: Optional[datetime] = None) -> None:
        self.status = WebhookStatus.PROCESSED
        self.processed_at = now or utcnow()
        self.processing_error = None

    def mark_failed(self, error: str, max_attempts: int) -> None:
        """记录一次失败；返回后 status 为 FAILED 或 DEAD"""
        self.retry_count += 1
        self.processing_error = error[:1000]
        self.status = WebhookStatus.DEAD if self.retry_count >= max_attempts else WebhookStatus.FAILED
