"""
幂等记录数据库模型
"""
from sqlalchemy import Column, DateTime, Integer, JSON, String
from datetime import datetime, timezone

from .base import Base


class IdempotencyRecordModel(Base):
    __tablename__ = "idempotency_records"

    # 主键即唯一约束，插入冲突即为抢占失败
    key = Column(String(255), primary_key=True, comment="幂等键")
    method = Column(String(10), nullable=False, comment="HTTP 方法")
    path = Column(String(500), nullable=False, comment="请求路径")
    fingerprint = Column(String(64), nullable=False, comment="请求指纹 sha256")
    user_id = Column(String(64), nullable=True, comment="用户ID")
    response_status = Column(Integer, nullable=True, comment="响应状态码")
    response_body = Column(JSON, nullable=True, comment="响应体")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间",
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True, comment="过期时间")
