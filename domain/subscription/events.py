"""Subscription domain events."""
from __future__ import annotations

from typing import Any

from domain.common.events import DomainEvent

from .entity import Subscription

AGGREGATE_TYPE = "subscription"

SUBSCRIPTION_CREATED = "subscription.created"
SUBSCRIPTION_ACTIVATED = "subscription.activated"
SUBSCRIPTION_RENEWED = "subscription.renewed"
SUBSCRIPTION_RENEWAL_FAILED = "subscription.renewal_failed"
SUBSCRIPTION_PAST_DUE = "subscription.past_due"
SUBSCRIPTION_EXPIRED = "subscription.expired"
SUBSCRIPTION_CANCELLED = "subscription.cancelled"
SUBSCRIPTION_CANCEL_SCHEDULED = "subscription.cancel_scheduled"


def _iso(value) -> Any:
    return value.isoformat().replace("+00:00", "Z") if value is not None else None


def subscription_payload(subscription: Subscription) -> dict[str, Any]:
    return {
        "subscriptionId": subscription.id,
        "userId": subscription.user_id,
        "planId": subscription.plan_id,
        "status": subscription.status.value,
        "provider": subscription.provider,
        "amount": str(subscription.amount),
        "currency": subscription.currency,
        "currentPeriodStart": _iso(subscription.current_period_start),
        "currentPeriodEnd": _iso(subscription.current_period_end),
        "cancelAtPeriodEnd": subscription.cancel_at_period_end,
    }


def subscription_event(event_type: str, subscription: Subscription, **extra: Any) -> DomainEvent:
    payload = subscription_payload(subscription)
    payload.update(extra)
    return DomainEvent(
        event_type=event_type,
        aggregate_type=AGGREGATE_TYPE,
        aggregate_id=subscription.id,
        payload=payload,
    )
