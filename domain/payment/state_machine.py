"""
支付状态机 - 纯函数 (状态, 触发器) -> (新状态, 事件, 流水, 指令)

状态流转：
    PENDING --accepted--> PROCESSING | REQUIRES_ACTION
    PROCESSING/REQUIRES_ACTION --confirmed--> SUCCEEDED
    PENDING/PROCESSING/REQUIRES_ACTION --declined/timed_out--> FAILED
    PENDING/PROCESSING/REQUIRES_ACTION --cancel--> CANCELLED
    SUCCEEDED/PARTIALLY_REFUNDED --refund settled--> PARTIALLY_REFUNDED | REFUNDED

不做任何 I/O：渠道调用由应用层执行，结果再作为触发器回传。
非法转换抛出 DomainViolationException，传入的聚合保持不变。
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from domain.common.exceptions import DomainViolationException, RefundExceedsRefundableException
from domain.common.money import Money
from domain.common.timeutils import utcnow
from domain.common.transition import TransitionResult
from domain.transaction.entity import Transaction, TransactionKind

from . import events as ev
from .entity import (
    OPEN_STATUSES,
    REFUNDABLE_STATUSES,
    Payment,
    PaymentStatus,
    RefundEntry,
    RefundStatus,
)


# ---- 触发器 ----

@dataclass(frozen=True)
class ProviderAccepted:
    provider_payment_id: Optional[str] = None
    requires_action: bool = False
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class ProviderConfirmed:
    provider_payment_id: Optional[str] = None


@dataclass(frozen=True)
class ProviderDeclined:
    code: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class ProviderTimedOut:
    message: str = "provider did not confirm the payment in time"


@dataclass(frozen=True)
class CancelRequested:
    reason: Optional[str] = None


@dataclass(frozen=True)
class RefundRequested:
    refund_id: str
    amount: Decimal
    reason: Optional[str] = None


@dataclass(frozen=True)
class RefundSucceeded:
    amount: Decimal
    refund_id: Optional[str] = None
    provider_refund_id: Optional[str] = None


@dataclass(frozen=True)
class RefundFailed:
    refund_id: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class ProviderReferenceAssigned:
    """渠道受理但尚未推进状态（如等待用户提交支付方式）：只记录引用"""

    provider_payment_id: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class RefundSubmitted:
    """渠道已接收退款请求，结果稍后通过 webhook 回传"""

    refund_id: str
    provider_refund_id: Optional[str] = None


PaymentTrigger = Union[
    ProviderAccepted,
    ProviderConfirmed,
    ProviderDeclined,
    ProviderTimedOut,
    CancelRequested,
    RefundRequested,
    RefundSucceeded,
    RefundFailed,
    ProviderReferenceAssigned,
    RefundSubmitted,
]


# ---- 指令 ----

@dataclass(frozen=True)
class IssueRefund:
    """要求应用层调用渠道退款接口"""

    payment_id: str
    refund_id: str
    provider: str
    provider_payment_id: Optional[str]
    amount: Decimal
    currency: str
    reason: Optional[str] = None


_TRIGGER_NAMES = {
    ProviderAccepted: "provider_accepted",
    ProviderConfirmed: "provider_confirmed",
    ProviderDeclined: "provider_declined",
    ProviderTimedOut: "provider_timed_out",
    CancelRequested: "cancel_requested",
    RefundRequested: "refund_requested",
    RefundSucceeded: "refund_succeeded",
    RefundFailed: "refund_failed",
    ProviderReferenceAssigned: "provider_reference_assigned",
    RefundSubmitted: "refund_submitted",
}


def trigger_name(trigger: PaymentTrigger) -> str:
    return _TRIGGER_NAMES[type(trigger)]


def _violation(payment: Payment, trigger: PaymentTrigger, message: Optional[str] = None) -> DomainViolationException:
    name = trigger_name(trigger)
    return DomainViolationException(
        message or f"Cannot apply {name} to payment in status {payment.status.value}",
        aggregate_type="payment",
        current_state=payment.status.value,
        trigger=name,
        details={"payment_id": payment.id},
    )


def apply(payment: Payment, trigger: PaymentTrigger, *, now: Optional[datetime] = None) -> TransitionResult[Payment]:
    """对支付聚合应用触发器；不修改传入对象"""
    handler = _HANDLERS.get(type(trigger))
    if handler is None:
        raise TypeError(f"Unsupported payment trigger: {type(trigger).__name__}")
    return handler(payment, trigger, now or utcnow())


def _next(payment: Payment, now: datetime) -> Payment:
    nxt = copy.deepcopy(payment)
    nxt.updated_at = now
    return nxt


def _on_accepted(payment: Payment, trigger: ProviderAccepted, now: datetime) -> TransitionResult[Payment]:
    if payment.status != PaymentStatus.PENDING:
        # 迟到的受理通知（已进入后续状态）视为回声
        return TransitionResult.unchanged(payment)
    nxt = _next(payment, now)
    nxt.status = PaymentStatus.REQUIRES_ACTION if trigger.requires_action else PaymentStatus.PROCESSING
    if trigger.provider_payment_id:
        nxt.provider_payment_id = trigger.provider_payment_id
    if trigger.client_secret:
        nxt.client_secret = trigger.client_secret
    event_type = ev.PAYMENT_REQUIRES_ACTION if trigger.requires_action else ev.PAYMENT_PROCESSING
    return TransitionResult(aggregate=nxt, events=[ev.payment_event(event_type, nxt)])


def _on_confirmed(payment: Payment, trigger: ProviderConfirmed, now: datetime) -> TransitionResult[Payment]:
    if payment.status in REFUNDABLE_STATUSES or payment.status == PaymentStatus.REFUNDED:
        return TransitionResult.unchanged(payment)
    if payment.status not in (PaymentStatus.PROCESSING, PaymentStatus.REQUIRES_ACTION):
        raise _violation(payment, trigger)
    nxt = _next(payment, now)
    nxt.status = PaymentStatus.SUCCEEDED
    nxt.succeeded_at = now
    nxt.error_code = None
    nxt.error_message = None
    if trigger.provider_payment_id:
        nxt.provider_payment_id = trigger.provider_payment_id
    charge = Transaction.record(
        TransactionKind.CHARGE,
        nxt.money,
        payment_id=nxt.id,
        provider=nxt.provider,
        provider_reference=nxt.provider_payment_id,
        at=now,
    )
    return TransitionResult(
        aggregate=nxt,
        events=[ev.payment_event(ev.PAYMENT_SUCCEEDED, nxt)],
        transactions=[charge],
    )


def _on_failed(payment: Payment, trigger: Union[ProviderDeclined, ProviderTimedOut], now: datetime) -> TransitionResult[Payment]:
    if payment.status == PaymentStatus.FAILED:
        return TransitionResult.unchanged(payment)
    if payment.status not in OPEN_STATUSES:
        raise _violation(payment, trigger)
    nxt = _next(payment, now)
    nxt.status = PaymentStatus.FAILED
    nxt.failed_at = now
    if isinstance(trigger, ProviderDeclined):
        nxt.error_code = trigger.code or "declined"
        nxt.error_message = trigger.message
    else:
        nxt.error_code = "timeout"
        nxt.error_message = trigger.message
    return TransitionResult(
        aggregate=nxt,
        events=[ev.payment_event(ev.PAYMENT_FAILED, nxt, errorCode=nxt.error_code)],
    )


def _on_cancel(payment: Payment, trigger: CancelRequested, now: datetime) -> TransitionResult[Payment]:
    if payment.status == PaymentStatus.CANCELLED:
        return TransitionResult.unchanged(payment)
    if payment.status not in OPEN_STATUSES:
        raise _violation(payment, trigger)
    nxt = _next(payment, now)
    nxt.status = PaymentStatus.CANCELLED
    nxt.cancelled_at = now
    if trigger.reason:
        nxt.error_message = trigger.reason
    return TransitionResult(aggregate=nxt, events=[ev.payment_event(ev.PAYMENT_CANCELLED, nxt)])


def _on_refund_requested(payment: Payment, trigger: RefundRequested, now: datetime) -> TransitionResult[Payment]:
    existing = payment.refunds.get(trigger.refund_id)
    if existing is not None:
        return TransitionResult.unchanged(payment)
    if payment.status not in REFUNDABLE_STATUSES:
        raise _violation(payment, trigger)
    requested = Money(Decimal(str(trigger.amount)), payment.currency)
    if not requested.is_positive():
        raise _violation(payment, trigger, f"Refund amount must be greater than 0: {requested.amount}")
    refundable = payment.refundable_amount()
    if requested.amount > refundable:
        raise RefundExceedsRefundableException(requested.amount, refundable, current_state=payment.status.value)

    nxt = _next(payment, now)
    nxt.refunds[trigger.refund_id] = RefundEntry(
        refund_id=trigger.refund_id,
        amount=requested.amount,
        status=RefundStatus.PENDING,
        reason=trigger.reason,
    )
    instruction = IssueRefund(
        payment_id=nxt.id,
        refund_id=trigger.refund_id,
        provider=nxt.provider,
        provider_payment_id=nxt.provider_payment_id,
        amount=requested.amount,
        currency=nxt.currency,
        reason=trigger.reason,
    )
    return TransitionResult(
        aggregate=nxt,
        events=[ev.payment_event(ev.PAYMENT_REFUND_REQUESTED, nxt, refundId=trigger.refund_id, refundAmount=str(requested.amount))],
        instructions=[instruction],
    )


def _on_refund_succeeded(payment: Payment, trigger: RefundSucceeded, now: datetime) -> TransitionResult[Payment]:
    entry = payment.find_refund(trigger.refund_id, trigger.provider_refund_id)
    if entry is not None and entry.status == RefundStatus.SUCCEEDED:
        return TransitionResult.unchanged(payment)
    if payment.status not in REFUNDABLE_STATUSES:
        raise _violation(payment, trigger)

    nxt = _next(payment, now)
    if entry is not None and entry.status == RefundStatus.PENDING:
        settled = nxt.refunds[entry.refund_id]
    else:
        # 渠道侧发起的退款（或之前被判失败的退款）：直接入账，但仍受可退金额约束
        amount = Money(Decimal(str(trigger.amount)), payment.currency).amount
        refundable = payment.refundable_amount()
        if amount <= 0 or amount > refundable:
            raise RefundExceedsRefundableException(amount, refundable, current_state=payment.status.value)
        refund_id = entry.refund_id if entry is not None else (trigger.refund_id or trigger.provider_refund_id or "")
        settled = RefundEntry(refund_id=refund_id, amount=amount, status=RefundStatus.PENDING)
        nxt.refunds[refund_id] = settled

    settled.status = RefundStatus.SUCCEEDED
    if trigger.provider_refund_id:
        settled.provider_refund_id = trigger.provider_refund_id
    nxt.refunded_amount = nxt.refunded_amount + settled.amount
    nxt.refunded_at = now
    full = nxt.refunded_amount >= nxt.amount
    nxt.status = PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED

    kind = TransactionKind.REFUND if settled.amount == nxt.amount else TransactionKind.PARTIAL_REFUND
    txn = Transaction.record(
        kind,
        Money(settled.amount, nxt.currency),
        payment_id=nxt.id,
        provider=nxt.provider,
        provider_reference=settled.provider_refund_id,
        at=now,
    )
    event_type = ev.PAYMENT_REFUNDED if full else ev.PAYMENT_PARTIALLY_REFUNDED
    return TransitionResult(
        aggregate=nxt,
        events=[ev.payment_event(event_type, nxt, refundId=settled.refund_id, refundAmount=str(settled.amount))],
        transactions=[txn],
    )


def _on_refund_failed(payment: Payment, trigger: RefundFailed, now: datetime) -> TransitionResult[Payment]:
    entry = payment.refunds.get(trigger.refund_id)
    if entry is None:
        raise _violation(payment, trigger, f"Unknown refund: {trigger.refund_id}")
    if entry.status == RefundStatus.FAILED:
        return TransitionResult.unchanged(payment)
    if entry.status == RefundStatus.SUCCEEDED:
        raise _violation(payment, trigger, f"Refund {trigger.refund_id} already succeeded")
    nxt = _next(payment, now)
    released = nxt.refunds[trigger.refund_id]
    released.status = RefundStatus.FAILED
    released.reason = trigger.reason or released.reason
    return TransitionResult(
        aggregate=nxt,
        events=[ev.payment_event(ev.PAYMENT_REFUND_FAILED, nxt, refundId=released.refund_id, refundAmount=str(released.amount))],
    )



def _on_reference_assigned(payment: Payment, trigger: ProviderReferenceAssigned, now: datetime) -> TransitionResult[Payment]:
    """不是状态转换：不产生事件"""
    ppid = trigger.provider_payment_id or payment.provider_payment_id
    secret = trigger.client_secret or payment.client_secret
    if ppid == payment.provider_payment_id and secret == payment.client_secret:
        return TransitionResult.unchanged(payment)
    if payment.provider_payment_id and ppid != payment.provider_payment_id:
        raise _violation(payment, trigger, "provider_payment_id is already assigned")
    nxt = _next(payment, now)
    nxt.provider_payment_id = ppid
    nxt.client_secret = secret
    return TransitionResult(aggregate=nxt)


def _on_refund_submitted(payment: Payment, trigger: RefundSubmitted, now: datetime) -> TransitionResult[Payment]:
    entry = payment.refunds.get(trigger.refund_id)
    if entry is None:
        raise _violation(payment, trigger, f"Unknown refund: {trigger.refund_id}")
    if entry.status != RefundStatus.PENDING or not trigger.provider_refund_id or entry.provider_refund_id == trigger.provider_refund_id:
        return TransitionResult.unchanged(payment)
    nxt = _next(payment, now)
    nxt.refunds[trigger.refund_id].provider_refund_id = trigger.provider_refund_id
    return TransitionResult(aggregate=nxt)


_HANDLERS = {
    ProviderAccepted: _on_accepted,
    ProviderConfirmed: _on_confirmed,
    ProviderDeclined: _on_failed,
    ProviderTimedOut: _on_failed,
    CancelRequested: _on_cancel,
    RefundRequested: _on_refund_requested,
    RefundSucceeded: _on_refund_succeeded,
    RefundFailed: _on_refund_failed,
    ProviderReferenceAssigned: _on_reference_assigned,
    RefundSubmitted: _on_refund_submitted,
}
