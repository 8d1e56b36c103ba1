"""
Payment domain events.

Event names and payload builders for the payment lifecycle. Payloads carry
domain fields only; raw provider payloads never leave the webhook table.
"""
from __future__ import annotations

from typing import Any

from domain.common.events import DomainEvent

from .entity import Payment

AGGREGATE_TYPE = "payment"

PAYMENT_CREATED = "payment.created"
PAYMENT_PROCESSING = "payment.processing"
PAYMENT_REQUIRES_ACTION = "payment.requires_action"
PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"
PAYMENT_CANCELLED = "payment.cancelled"
PAYMENT_REFUND_REQUESTED = "payment.refund_requested"
PAYMENT_REFUND_FAILED = "payment.refund_failed"
PAYMENT_PARTIALLY_REFUNDED = "payment.partially_refunded"
PAYMENT_REFUNDED = "payment.refunded"


def payment_payload(payment: Payment) -> dict[str, Any]:
    return {
        "paymentId": payment.id,
        "userId": payment.user_id,
        "amount": str(payment.amount),
        "currency": payment.currency,
        "status": payment.status.value,
        "provider": payment.provider,
        "providerPaymentId": payment.provider_payment_id,
        "subscriptionId": payment.subscription_id,
        "refundedAmount": str(payment.refunded_amount),
    }


def payment_event(event_type: str, payment: Payment, **extra: Any) -> DomainEvent:
    payload = payment_payload(payment)
    payload.update(extra)
    return DomainEvent(
        event_type=event_type,
        aggregate_type=AGGREGATE_TYPE,
        aggregate_id=payment.id,
        payload=payload,
    )
