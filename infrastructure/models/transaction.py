"""
交易流水数据库模型（只追加）
"""
from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String, Text
from datetime import datetime, timezone

from .base import Base


class TransactionModel(Base):
    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True, comment="流水ID")
    kind = Column(String(32), nullable=False, comment="类型: charge/refund/partial_refund/payout/adjustment")
    amount = Column(Numeric(precision=18, scale=4), nullable=False, comment="金额")
    currency = Column(String(3), nullable=False, comment="货币代码")
    payment_id = Column(String(64), nullable=True, index=True, comment="关联支付")
    subscription_id = Column(String(64), nullable=True, index=True, comment="关联订阅")
    provider = Column(String(32), nullable=True, comment="支付提供商")
    provider_reference = Column(String(200), nullable=True, comment="渠道引用")
    description = Column(Text, nullable=True, comment="描述")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间",
    )

    __table_args__ = (
        CheckConstraint(
            "(payment_id IS NULL) <> (subscription_id IS NULL)",
            name="single_owner",
        ),
    )
