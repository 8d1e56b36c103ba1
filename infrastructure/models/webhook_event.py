"""
Webhook 事件数据库模型
"""
from sqlalchemy import Column, DateTime, Integer, JSON, String, Text, Index, UniqueConstraint
from datetime import datetime, timezone

from .base import Base


class WebhookEventModel(Base):
    __tablename__ = "webhook_events"

    id = Column(String(64), primary_key=True, comment="事件ID")
    provider = Column(String(32), nullable=False, comment="支付提供商")
    provider_event_id = Column(String(200), nullable=False, comment="渠道事件ID")
    event_type = Column(String(100), nullable=False, comment="渠道事件类型")
    payload = Column(Text, nullable=False, comment="原始请求体")
    signature = Column(String(500), nullable=True, comment="签名头")
    notification = Column(JSON, nullable=False, comment="标准化后的通知")
    status = Column(String(16), nullable=False, default="pending", comment="处理状态")
    retry_count = Column(Integer, nullable=False, default=0, comment="失败次数")
    processing_error = Column(Text, nullable=True, comment="最近一次处理错误")
    received_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="接收时间",
    )
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="处理完成时间")

    __table_args__ = (
        # 去重依据
        UniqueConstraint("provider", "provider_event_id", name="uq_webhook_events_provider_event"),
        Index("ix_webhook_events_status_received", "status", "received_at"),
    )
