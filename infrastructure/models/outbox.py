"""
Outbox 数据库模型
"""
from sqlalchemy import Column, DateTime, Integer, JSON, String, Text, Index

from .base import Base


class OutboxModel(Base):
    __tablename__ = "outbox"

    # 自增 id 决定投递顺序
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(64), unique=True, nullable=False, comment="事件ID")
    event_type = Column(String(100), nullable=False, comment="事件类型")
    aggregate_type = Column(String(32), nullable=False, comment="聚合类型")
    aggregate_id = Column(String(64), nullable=False, comment="聚合ID")
    payload = Column(JSON, nullable=False, comment="事件内容")
    occurred_at = Column(DateTime(timezone=True), nullable=False, comment="发生时间")
    published_at = Column(DateTime(timezone=True), nullable=True, comment="投递确认时间")
    attempts = Column(Integer, nullable=False, default=0, comment="失败次数")
    last_error = Column(Text, nullable=True, comment="最近一次投递错误")
    claimed_by = Column(String(64), nullable=True, comment="租约持有者")
    claimed_until = Column(DateTime(timezone=True), nullable=True, comment="租约到期时间")

    __table_args__ = (
        Index("ix_outbox_unpublished", "published_at", "id"),
        Index("ix_outbox_aggregate", "aggregate_type", "aggregate_id"),
    )
