"""
Payment DTOs (Pydantic v2) used at application boundaries.

Commands come in from the API layer, provider DTOs cross the gateway port and
views go back out. Amounts stay ``Decimal`` end to end; minor-unit conversion
happens inside the provider adapters.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from domain.payment.entity import Payment
from domain.subscription.entity import BillingInterval, Subscription
from domain.transaction.entity import Transaction


def _validate_currency(v: str) -> str:
    u = (v or "").strip().upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


def _validate_region(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    u = v.strip().upper()
    if len(u) != 2 or not u.isalpha():
        raise ValueError("region must be ISO-3166 alpha-2")
    return u


# ---- commands ----


class CreatePaymentCommand(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str
    provider: Optional[str] = None
    region: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return _validate_currency(v)

    @field_validator("region")
    @classmethod
    def _upper_region(cls, v: Optional[str]) -> Optional[str]:
        return _validate_region(v)

    @field_validator("provider")
    @classmethod
    def _lower_provider(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else None


class RefundPaymentCommand(BaseModel):
    amount: Optional[condecimal(gt=0)] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)


class CancelPaymentCommand(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CreateSubscriptionCommand(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    plan_id: str = Field(min_length=1, max_length=64)
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str
    interval: BillingInterval = BillingInterval.MONTH
    interval_count: int = Field(default=1, ge=1, le=12)
    trial_days: int = Field(default=0, ge=0, le=365)
    provider: Optional[str] = None
    region: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return _validate_currency(v)

    @field_validator("region")
    @classmethod
    def _upper_region(cls, v: Optional[str]) -> Optional[str]:
        return _validate_region(v)

    @field_validator("provider")
    @classmethod
    def _lower_provider(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else None


class CancelSubscriptionCommand(BaseModel):
    at_period_end: bool = True
    reason: Optional[str] = Field(default=None, max_length=500)


# ---- provider DTOs ----

InternalPaymentStatus = Literal["pending", "processing", "requires_action", "succeeded", "failed", "canceled"]


class ProviderPaymentRequest(BaseModel):
    payment_id: str
    user_id: str
    amount: Decimal
    currency: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProviderPaymentResult(BaseModel):
    provider: str
    provider_payment_id: Optional[str] = None
    status: InternalPaymentStatus
    client_secret: Optional[str] = None
    raw_status: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    found: bool = True

    @property
    def requires_action(self) -> bool:
        return self.status == "requires_action"


class ProviderRefundRequest(BaseModel):
    payment_id: str
    refund_id: str
    provider_payment_id: Optional[str] = None
    amount: Decimal
    currency: str
    reason: Optional[str] = None


class ProviderRefundResult(BaseModel):
    provider: str
    refund_id: str
    provider_refund_id: Optional[str] = None
    status: Literal["pending", "succeeded", "failed"]
    error_message: Optional[str] = None


NotificationKind = Literal[
    "payment.processing",
    "payment.requires_action",
    "payment.succeeded",
    "payment.failed",
    "payment.cancelled",
    "refund.succeeded",
    "refund.failed",
    "subscription.renewed",
    "subscription.payment_failed",
    "subscription.cancelled",
    "ignored",
]


class WebhookNotification(BaseModel):
    """Provider webhook normalised into the internal vocabulary."""

    provider: str
    event_id: str
    event_type: str
    kind: NotificationKind = "ignored"
    payment_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    refund_id: Optional[str] = None
    provider_refund_id: Optional[str] = None
    subscription_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    signature: Optional[str] = None

    model_config = ConfigDict(frozen=True)


# ---- views ----


class RefundView(BaseModel):
    refund_id: str
    amount: Decimal
    status: str
    provider_refund_id: Optional[str] = None


class PaymentView(BaseModel):
    id: str
    user_id: str
    amount: Decimal
    currency: str
    status: str
    provider: str
    provider_payment_id: Optional[str] = None
    client_secret: Optional[str] = None
    subscription_id: Optional[str] = None
    refunded_amount: Decimal
    refunds: list[RefundView] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    succeeded_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentView":
        return cls(
            id=payment.id,
            user_id=payment.user_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status.value,
            provider=payment.provider,
            provider_payment_id=payment.provider_payment_id,
            client_secret=payment.client_secret,
            subscription_id=payment.subscription_id,
            refunded_amount=payment.refunded_amount,
            refunds=[
                RefundView(
                    refund_id=r.refund_id,
                    amount=r.amount,
                    status=r.status.value,
                    provider_refund_id=r.provider_refund_id,
                )
                for r in payment.refunds.values()
            ],
            metadata=payment.metadata,
            error_code=payment.error_code,
            error_message=payment.error_message,
            version=payment.version,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
            succeeded_at=payment.succeeded_at,
            failed_at=payment.failed_at,
            refunded_at=payment.refunded_at,
        )


class SubscriptionView(BaseModel):
    id: str
    user_id: str
    plan_id: str
    status: str
    provider: str
    provider_subscription_id: Optional[str] = None
    amount: Decimal
    currency: str
    interval: str
    interval_count: int
    current_period_start: datetime
    current_period_end: datetime
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    version: int
    initial_payment: Optional[PaymentView] = None

    @classmethod
    def from_entity(cls, sub: Subscription, initial_payment: Optional[Payment] = None) -> "SubscriptionView":
        return cls(
            id=sub.id,
            user_id=sub.user_id,
            plan_id=sub.plan_id,
            status=sub.status.value,
            provider=sub.provider,
            provider_subscription_id=sub.provider_subscription_id,
            amount=sub.amount,
            currency=sub.currency,
            interval=sub.interval.value,
            interval_count=sub.interval_count,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            trial_end=sub.trial_end,
            cancel_at_period_end=sub.cancel_at_period_end,
            cancel_reason=sub.cancel_reason,
            cancelled_at=sub.cancelled_at,
            ended_at=sub.ended_at,
            version=sub.version,
            initial_payment=PaymentView.from_entity(initial_payment) if initial_payment else None,
        )


class TransactionView(BaseModel):
    id: str
    kind: str
    amount: Decimal
    currency: str
    payment_id: Optional[str] = None
    subscription_id: Optional[str] = None
    provider_reference: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, txn: Transaction) -> "TransactionView":
        return cls(
            id=txn.id,
            kind=txn.kind.value,
            amount=txn.amount,
            currency=txn.currency,
            payment_id=txn.payment_id,
            subscription_id=txn.subscription_id,
            provider_reference=txn.provider_reference,
            created_at=txn.created_at,
        )
