"""
订阅状态机 - 纯函数 (状态, 触发器) -> (新状态, 事件, 流水)

状态流转：
    INCOMPLETE --activation--> ACTIVE        INCOMPLETE --expired--> EXPIRED
    TRIALING --trial ended--> ACTIVE
    ACTIVE/TRIALING/PAST_DUE --renewal ok--> ACTIVE
    ACTIVE/TRIALING --renewal failed--> PAST_DUE
    PAST_DUE --renewal failed (耗尽)--> EXPIRED
    ACTIVE/TRIALING/PAST_DUE/INCOMPLETE --cancel--> CANCELLED
    ACTIVE/TRIALING/PAST_DUE --cancel at period end--> 状态不变，到期后 CANCELLED
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from domain.common.exceptions import DomainViolationException
from domain.common.timeutils import ensure_utc, utcnow
from domain.common.transition import TransitionResult
from domain.transaction.entity import Transaction, TransactionKind

from . import events as ev
from .entity import LIVE_STATUSES, Subscription, SubscriptionStatus, check_period

DEFAULT_MAX_RENEWAL_FAILURES = 3


@dataclass(frozen=True)
class ActivationConfirmed:
    provider_subscription_id: Optional[str] = None
    payment_id: Optional[str] = None


@dataclass(frozen=True)
class IncompleteExpired:
    pass


@dataclass(frozen=True)
class TrialEnded:
    pass


@dataclass(frozen=True)
class RenewalSucceeded:
    period_start: datetime
    period_end: datetime
    provider_reference: Optional[str] = None
    provider_subscription_id: Optional[str] = None


@dataclass(frozen=True)
class RenewalFailed:
    reason: Optional[str] = None
    max_failures: int = DEFAULT_MAX_RENEWAL_FAILURES


@dataclass(frozen=True)
class CancelRequested:
    at_period_end: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class PeriodEnded:
    at: datetime


SubscriptionTrigger = Union[
    ActivationConfirmed,
    IncompleteExpired,
    TrialEnded,
    RenewalSucceeded,
    RenewalFailed,
    CancelRequested,
    PeriodEnded,
]

_TRIGGER_NAMES = {
    ActivationConfirmed: "activation_confirmed",
    IncompleteExpired: "incomplete_expired",
    TrialEnded: "trial_ended",
    RenewalSucceeded: "renewal_succeeded",
    RenewalFailed: "renewal_failed",
    CancelRequested: "cancel_requested",
    PeriodEnded: "period_ended",
}


def _violation(subscription: Subscription, trigger: SubscriptionTrigger) -> DomainViolationException:
    name = _TRIGGER_NAMES[type(trigger)]
    return DomainViolationException(
        f"Cannot apply {name} to subscription in status {subscription.status.value}",
        aggregate_type="subscription",
        current_state=subscription.status.value,
        trigger=name,
        details={"subscription_id": subscription.id},
    )


def apply(
    subscription: Subscription, trigger: SubscriptionTrigger, *, now: Optional[datetime] = None
) -> TransitionResult[Subscription]:
    """对订阅聚合应用触发器；不修改传入对象"""
    handler = _HANDLERS.get(type(trigger))
    if handler is None:
        raise TypeError(f"Unsupported subscription trigger: {type(trigger).__name__}")
    return handler(subscription, trigger, now or utcnow())


def _next(subscription: Subscription, now: datetime) -> Subscription:
    nxt = copy.deepcopy(subscription)
    nxt.updated_at = now
    return nxt


def _end(nxt: Subscription, status: SubscriptionStatus, now: datetime) -> None:
    nxt.status = status
    nxt.cancelled_at = now
    nxt.ended_at = now


def _on_activation(sub: Subscription, trigger: ActivationConfirmed, now: datetime) -> TransitionResult[Subscription]:
    if sub.status == SubscriptionStatus.ACTIVE:
        return TransitionResult.unchanged(sub)
    if sub.status != SubscriptionStatus.INCOMPLETE:
        raise _violation(sub, trigger)
    nxt = _next(sub, now)
    nxt.status = SubscriptionStatus.ACTIVE
    if trigger.provider_subscription_id:
        nxt.provider_subscription_id = trigger.provider_subscription_id
    return TransitionResult(
        aggregate=nxt,
        events=[ev.subscription_event(ev.SUBSCRIPTION_ACTIVATED, nxt, paymentId=trigger.payment_id)],
    )


def _on_incomplete_expired(sub: Subscription, trigger: IncompleteExpired, now: datetime) -> TransitionResult[Subscription]:
    if sub.status == SubscriptionStatus.EXPIRED:
        return TransitionResult.unchanged(sub)
    if sub.status != SubscriptionStatus.INCOMPLETE:
        raise _violation(sub, trigger)
    nxt = _next(sub, now)
    _end(nxt, SubscriptionStatus.EXPIRED, now)
    return TransitionResult(aggregate=nxt, events=[ev.subscription_event(ev.SUBSCRIPTION_EXPIRED, nxt)])


def _on_trial_ended(sub: Subscription, trigger: TrialEnded, now: datetime) -> TransitionResult[Subscription]:
    if sub.status == SubscriptionStatus.ACTIVE:
        return TransitionResult.unchanged(sub)
    if sub.status != SubscriptionStatus.TRIALING:
        raise _violation(sub, trigger)
    nxt = _next(sub, now)
    nxt.status = SubscriptionStatus.ACTIVE
    return TransitionResult(aggregate=nxt, events=[ev.subscription_event(ev.SUBSCRIPTION_ACTIVATED, nxt)])


def _on_renewal_succeeded(sub: Subscription, trigger: RenewalSucceeded, now: datetime) -> TransitionResult[Subscription]:
    start, end = ensure_utc(trigger.period_start), ensure_utc(trigger.period_end)
    if sub.status not in LIVE_STATUSES:
        raise _violation(sub, trigger)
    if sub.status == SubscriptionStatus.ACTIVE and end <= sub.current_period_end:
        # 同一周期（或更早周期）的重复续费通知
        return TransitionResult.unchanged(sub)
    check_period(start, end)
    nxt = _next(sub, now)
    nxt.status = SubscriptionStatus.ACTIVE
    nxt.current_period_start = start
    nxt.current_period_end = end
    nxt.failed_renewals = 0
    if trigger.provider_subscription_id:
        nxt.provider_subscription_id = trigger.provider_subscription_id
    charge = Transaction.record(
        TransactionKind.CHARGE,
        nxt.billing,
        subscription_id=nxt.id,
        provider=nxt.provider,
        provider_reference=trigger.provider_reference,
        description=f"renewal {start.date().isoformat()}..{end.date().isoformat()}",
        at=now,
    )
    return TransitionResult(
        aggregate=nxt,
        events=[ev.subscription_event(ev.SUBSCRIPTION_RENEWED, nxt)],
        transactions=[charge],
    )


def _on_renewal_failed(sub: Subscription, trigger: RenewalFailed, now: datetime) -> TransitionResult[Subscription]:
    if sub.status == SubscriptionStatus.EXPIRED:
        return TransitionResult.unchanged(sub)
    if sub.status not in LIVE_STATUSES:
        raise _violation(sub, trigger)
    nxt = _next(sub, now)
    nxt.failed_renewals += 1
    if nxt.failed_renewals >= trigger.max_failures:
        _end(nxt, SubscriptionStatus.EXPIRED, now)
        event_type = ev.SUBSCRIPTION_EXPIRED
    elif sub.status == SubscriptionStatus.PAST_DUE:
        event_type = ev.SUBSCRIPTION_RENEWAL_FAILED
    else:
        nxt.status = SubscriptionStatus.PAST_DUE
        event_type = ev.SUBSCRIPTION_PAST_DUE
    return TransitionResult(
        aggregate=nxt,
        events=[ev.subscription_event(event_type, nxt, failedRenewals=nxt.failed_renewals, reason=trigger.reason)],
    )


def _on_cancel(sub: Subscription, trigger: CancelRequested, now: datetime) -> TransitionResult[Subscription]:
    if sub.status == SubscriptionStatus.CANCELLED:
        return TransitionResult.unchanged(sub)
    if sub.status == SubscriptionStatus.INCOMPLETE:
        # 未生效的订阅没有可保留的周期，直接取消
        nxt = _next(sub, now)
        nxt.cancel_reason = trigger.reason
        _end(nxt, SubscriptionStatus.CANCELLED, now)
        return TransitionResult(aggregate=nxt, events=[ev.subscription_event(ev.SUBSCRIPTION_CANCELLED, nxt)])
    if sub.status not in LIVE_STATUSES:
        raise _violation(sub, trigger)
    if trigger.at_period_end:
        if sub.cancel_at_period_end:
            return TransitionResult.unchanged(sub)
        nxt = _next(sub, now)
        nxt.cancel_at_period_end = True
        nxt.cancel_reason = trigger.reason
        return TransitionResult(aggregate=nxt, events=[ev.subscription_event(ev.SUBSCRIPTION_CANCEL_SCHEDULED, nxt)])
    nxt = _next(sub, now)
    nxt.cancel_reason = trigger.reason or nxt.cancel_reason
    _end(nxt, SubscriptionStatus.CANCELLED, now)
    return TransitionResult(aggregate=nxt, events=[ev.subscription_event(ev.SUBSCRIPTION_CANCELLED, nxt)])


def _on_period_ended(sub: Subscription, trigger: PeriodEnded, now: datetime) -> TransitionResult[Subscription]:
    at = ensure_utc(trigger.at)
    if sub.status not in LIVE_STATUSES or not sub.cancel_at_period_end or at < sub.current_period_end:
        return TransitionResult.unchanged(sub)
    nxt = _next(sub, now)
    _end(nxt, SubscriptionStatus.CANCELLED, now)
    return TransitionResult(aggregate=nxt, events=[ev.subscription_event(ev.SUBSCRIPTION_CANCELLED, nxt)])


_HANDLERS = {
    ActivationConfirmed: _on_activation,
    IncompleteExpired: _on_incomplete_expired,
    TrialEnded: _on_trial_ended,
    RenewalSucceeded: _on_renewal_succeeded,
    RenewalFailed: _on_renewal_failed,
    CancelRequested: _on_cancel,
    PeriodEnded: _on_period_ended,
}
