"""
支付领域实体 - 支付聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid

from domain.common.exceptions import DomainValidationException
from domain.common.money import Money, normalize_currency
from domain.common.timeutils import ensure_utc, utcnow


METADATA_MAX_KEYS = 50
METADATA_MAX_KEY_LENGTH = 40
METADATA_MAX_VALUE_LENGTH = 500


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"                        # 已创建，渠道尚未受理
    PROCESSING = "processing"                  # 渠道处理中
    REQUIRES_ACTION = "requires_action"        # 需要用户进一步操作（3DS 等）
    SUCCEEDED = "succeeded"                    # 支付成功
    FAILED = "failed"                          # 支付失败
    CANCELLED = "cancelled"                    # 已取消
    PARTIALLY_REFUNDED = "partially_refunded"  # 部分退款
    REFUNDED = "refunded"                      # 全额退款


OPEN_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.REQUIRES_ACTION})
REFUNDABLE_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED})


class RefundStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def validate_metadata(metadata: Optional[dict]) -> dict[str, Any]:
    """业务规则：元数据大小受限"""
    metadata = metadata or {}
    if len(metadata) > METADATA_MAX_KEYS:
        raise DomainValidationException(
            f"metadata supports at most {METADATA_MAX_KEYS} keys", field="metadata"
        )
    for key, value in metadata.items():
        if len(str(key)) > METADATA_MAX_KEY_LENGTH:
            raise DomainValidationException(f"metadata key too long: {key}", field="metadata")
        if len(str(value)) > METADATA_MAX_VALUE_LENGTH:
            raise DomainValidationException(f"metadata value too long for key: {key}", field="metadata")
    return dict(metadata)


def new_payment_id() -> str:
    return f"pay_{uuid.uuid4().hex}"


def new_refund_id() -> str:
    return f"re_{uuid.uuid4().hex}"


@dataclass
class RefundEntry:
    """退款记录 - 作为 Payment 聚合的一部分保存"""

    refund_id: str
    amount: Decimal
    status: RefundStatus
    provider_refund_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "refund_id": self.refund_id,
            "amount": str(self.amount),
            "status": self.status.value,
            "provider_refund_id": self.provider_refund_id,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefundEntry":
        return cls(
            refund_id=data["refund_id"],
            amount=Decimal(str(data["amount"])),
            status=RefundStatus(data["status"]),
            provider_refund_id=data.get("provider_refund_id"),
            reason=data.get("reason"),
        )


@dataclass
class Payment:
    """
    支付聚合根 - 管理支付生命周期

    业务规则：
    1. 金额必须大于0，币种为 ISO-4217
    2. (provider, provider_payment_id) 组合唯一
    3. 状态只能经由状态机转换（domain.payment.state_machine）
    4. 退款总额（含处理中的退款）不能超过支付金额
    5. 记录永不物理删除
    """

    id: str
    user_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    provider: str
    provider_payment_id: Optional[str] = None
    client_secret: Optional[str] = None
    region: Optional[str] = None
    subscription_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # 退款
    refunded_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    refunds: dict[str, RefundEntry] = field(default_factory=dict)

    # 乐观锁版本号
    version: int = 0

    # 时间戳
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    succeeded_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def __post_init__(self):
        self.currency = normalize_currency(self.currency)
        # Money 负责精度校验
        self.amount = Money(Decimal(str(self.amount)), self.currency).amount
        if self.amount <= 0:
            raise DomainValidationException(f"Payment amount must be greater than 0: {self.amount}", field="amount")
        if not self.user_id:
            raise DomainValidationException("user_id is required", field="user_id")
        self.refunded_amount = Decimal(str(self.refunded_amount or 0))
        self.metadata = validate_metadata(self.metadata)
        self._normalize_timestamps()

    def _normalize_timestamps(self) -> None:
        """规范化所有时间戳为 UTC"""
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        self.succeeded_at = ensure_utc(self.succeeded_at)
        self.failed_at = ensure_utc(self.failed_at)
        self.cancelled_at = ensure_utc(self.cancelled_at)
        self.refunded_at = ensure_utc(self.refunded_at)

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        amount: Decimal,
        currency: str,
        provider: str,
        region: Optional[str] = None,
        subscription_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        payment_id: Optional[str] = None,
    ) -> "Payment":
        now = utcnow()
        return cls(
            id=payment_id or new_payment_id(),
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            provider=provider,
            region=region.upper() if region else None,
            subscription_id=subscription_id,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)

    @property
    def reserved_refund_amount(self) -> Decimal:
        """处理中的退款金额"""
        return sum(
            (r.amount for r in self.refunds.values() if r.status == RefundStatus.PENDING),
            Decimal("0"),
        )

    def refundable_amount(self) -> Decimal:
        """计算可退款金额（扣除已退款和处理中的退款）"""
        if self.status not in REFUNDABLE_STATUSES:
            return Decimal("0")
        return self.amount - self.refunded_amount - self.reserved_refund_amount

    def find_refund(self, refund_id: Optional[str] = None, provider_refund_id: Optional[str] = None) -> Optional[RefundEntry]:
        if refund_id and refund_id in self.refunds:
            return self.refunds[refund_id]
        if provider_refund_id:
            for entry in self.refunds.values():
                if entry.provider_refund_id == provider_refund_id:
                    return entry
        return None

    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_final_status(self) -> bool:
        """检查是否为终态"""
        return self.status in (
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
            PaymentStatus.REFUNDED,
        )
