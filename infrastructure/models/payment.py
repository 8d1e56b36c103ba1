"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, JSON, Index, UniqueConstraint
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    # 主键（pay_ 前缀）
    id = Column(String(64), primary_key=True, comment="支付ID")
    user_id = Column(String(64), nullable=False, index=True, comment="用户ID")

    # 支付渠道信息（创建时固定）
    provider = Column(String(32), nullable=False, index=True, comment="支付提供商: stripe/paystack")
    provider_payment_id = Column(String(200), nullable=True, comment="渠道支付ID")
    client_secret = Column(String(500), nullable=True, comment="客户端密钥（用于前端确认）")
    region = Column(String(2), nullable=True, comment="地区 ISO-3166")

    # 关联订阅（首笔支付）
    subscription_id = Column(String(64), nullable=True, index=True, comment="订阅ID")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=18, scale=4), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")

    # 状态
    status = Column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/processing/requires_action/succeeded/failed/cancelled/partially_refunded/refunded",
    )
    error_code = Column(String(100), nullable=True, comment="失败代码")
    error_message = Column(Text, nullable=True, comment="失败原因")

    # 退款（聚合内部记录，JSON 列表）
    refunded_amount = Column(Numeric(precision=18, scale=4), nullable=False, default=0, comment="已退款金额")
    refunds = Column(JSON, nullable=False, default=list, comment="退款记录")

    # 乐观锁版本号
    version = Column(Integer, nullable=False, default=0, comment="版本号")

    # 元数据（使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    # 时间戳
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
    succeeded_at = Column(DateTime(timezone=True), nullable=True, comment="支付成功时间")
    failed_at = Column(DateTime(timezone=True), nullable=True, comment="支付失败时间")
    cancelled_at = Column(DateTime(timezone=True), nullable=True, comment="取消时间")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="最近一次退款成功时间")

    # 索引
    __table_args__ = (
        UniqueConstraint("provider", "provider_payment_id", name="uq_payments_provider_payment_id"),
        Index("ix_payments_status_updated", "status", "updated_at"),
        Index("ix_payments_created_at", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id='{self.id}', provider='{self.provider}', "
            f"amount={self.amount}, status='{self.status}', version={self.version})>"
        )
