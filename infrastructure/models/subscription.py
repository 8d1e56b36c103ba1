"""
订阅数据库模型
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String, Text, Index, UniqueConstraint
from datetime import datetime, timezone

from .base import Base


class SubscriptionModel(Base):
    """订阅数据库模型，业务规则在 domain.subscription.entity.Subscription 中"""
    __tablename__ = "subscriptions"

    id = Column(String(64), primary_key=True, comment="订阅ID")
    user_id = Column(String(64), nullable=False, index=True, comment="用户ID")
    plan_id = Column(String(64), nullable=False, comment="套餐ID")

    provider = Column(String(32), nullable=False, comment="支付提供商")
    provider_subscription_id = Column(String(200), nullable=True, comment="渠道订阅ID")

    status = Column(String(32), nullable=False, index=True, comment="订阅状态")
    amount = Column(Numeric(precision=18, scale=4), nullable=False, comment="每期金额")
    currency = Column(String(3), nullable=False, comment="货币代码")
    interval = Column(String(16), nullable=False, comment="计费周期: day/week/month/year")
    interval_count = Column(Integer, nullable=False, default=1, comment="周期数")

    current_period_start = Column(DateTime(timezone=True), nullable=False, comment="当前周期开始")
    current_period_end = Column(DateTime(timezone=True), nullable=False, index=True, comment="当前周期结束")
    trial_start = Column(DateTime(timezone=True), nullable=True, comment="试用开始")
    trial_end = Column(DateTime(timezone=True), nullable=True, comment="试用结束")

    cancel_at_period_end = Column(Boolean, nullable=False, default=False, comment="是否期末取消")
    cancel_reason = Column(Text, nullable=True, comment="取消原因")
    cancelled_at = Column(DateTime(timezone=True), nullable=True, comment="取消时间")
    ended_at = Column(DateTime(timezone=True), nullable=True, comment="结束时间")
    failed_renewals = Column(Integer, nullable=False, default=0, comment="连续续费失败次数")

    version = Column(Integer, nullable=False, default=0, comment="版本号")
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间",
    )

    __table_args__ = (
        UniqueConstraint("provider", "provider_subscription_id", name="uq_subscriptions_provider_subscription_id"),
        Index("ix_subscriptions_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<SubscriptionModel(id='{self.id}', status='{self.status}', version={self.version})>"
