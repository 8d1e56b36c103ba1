"""
交易流水实体 - 不可变的资金变动记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
import uuid

from domain.common.exceptions import DomainValidationException
from domain.common.money import Money
from domain.common.timeutils import ensure_utc, utcnow


class TransactionKind(str, Enum):
    CHARGE = "charge"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    PAYOUT = "payout"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class Transaction:
    """
    交易流水

    业务规则：
    1. 创建后不可修改
    2. 必须且只能关联 payment 或 subscription 其中之一
    3. 金额必须大于0
    """

    id: str
    kind: TransactionKind
    amount: Decimal
    currency: str
    payment_id: Optional[str] = None
    subscription_id: Optional[str] = None
    provider: Optional[str] = None
    provider_reference: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if (self.payment_id is None) == (self.subscription_id is None):
            raise DomainValidationException(
                "Transaction must reference exactly one of payment or subscription",
                field="payment_id",
            )
        money = Money(Decimal(str(self.amount)), self.currency)
        if not money.is_positive():
            raise DomainValidationException(f"Transaction amount must be greater than 0: {self.amount}", field="amount")
        object.__setattr__(self, "amount", money.amount)
        object.__setattr__(self, "currency", money.currency)
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))

    @classmethod
    def record(
        cls,
        kind: TransactionKind,
        money: Money,
        *,
        payment_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        provider: Optional[str] = None,
        provider_reference: Optional[str] = None,
        description: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> "Transaction":
        return cls(
            id=f"txn_{uuid.uuid4().hex}",
            kind=kind,
            amount=money.amount,
            currency=money.currency,
            payment_id=payment_id,
            subscription_id=subscription_id,
            provider=provider,
            provider_reference=provider_reference,
            description=description,
            created_at=at or utcnow(),
        )
