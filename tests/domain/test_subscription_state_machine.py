from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainViolationException
from domain.subscription import state_machine as sm
from domain.subscription.entity import BillingInterval, Subscription, SubscriptionStatus, advance_period
from domain.transaction.entity import TransactionKind


NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


def _subscription(trial_days: int = 0) -> Subscription:
    return Subscription.create(
        user_id="u1",
        plan_id="pro",
        provider="stripe",
        amount=Decimal("9.99"),
        currency="USD",
        interval=BillingInterval.MONTH,
        trial_days=trial_days,
        now=NOW,
    )


def _active() -> Subscription:
    return sm.apply(_subscription(), sm.ActivationConfirmed(payment_id="pay_1"), now=NOW).aggregate


def test_create_without_trial_starts_incomplete():
    sub = _subscription()
    assert sub.status == SubscriptionStatus.INCOMPLETE
    assert sub.id.startswith("sub_")
    # 月末对齐：1 月 31 日 + 1 个月 = 2 月 29 日（闰年）
    assert sub.current_period_end == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)


def test_create_with_trial_starts_trialing():
    sub = _subscription(trial_days=14)
    assert sub.status == SubscriptionStatus.TRIALING
    assert sub.trial_end == NOW + timedelta(days=14)
    assert sub.current_period_end == sub.trial_end


def test_advance_period_by_interval():
    start = datetime(2024, 3, 10, tzinfo=timezone.utc)
    assert advance_period(start, BillingInterval.DAY, 3) == datetime(2024, 3, 13, tzinfo=timezone.utc)
    assert advance_period(start, BillingInterval.WEEK) == datetime(2024, 3, 17, tzinfo=timezone.utc)
    assert advance_period(start, BillingInterval.YEAR) == datetime(2025, 3, 10, tzinfo=timezone.utc)


def test_activation_and_echo():
    result = sm.apply(_subscription(), sm.ActivationConfirmed(payment_id="pay_1"), now=NOW)
    assert result.aggregate.status == SubscriptionStatus.ACTIVE
    assert [e.event_type for e in result.events] == ["subscription.activated"]
    assert sm.apply(result.aggregate, sm.ActivationConfirmed()).changed is False


def test_incomplete_expires():
    result = sm.apply(_subscription(), sm.IncompleteExpired(), now=NOW)
    assert result.aggregate.status == SubscriptionStatus.EXPIRED
    assert result.aggregate.cancelled_at == NOW


def test_trial_end_activates():
    result = sm.apply(_subscription(trial_days=7), sm.TrialEnded(), now=NOW)
    assert result.aggregate.status == SubscriptionStatus.ACTIVE
    assert result.aggregate.cancelled_at is None


def test_renewal_moves_period_and_records_charge():
    sub = _active()
    start, end = sub.next_period()
    result = sm.apply(sub, sm.RenewalSucceeded(start, end, provider_reference="in_1"), now=NOW)
    assert result.aggregate.current_period_start == start
    assert result.aggregate.current_period_end == end
    assert result.transactions[0].kind == TransactionKind.CHARGE
    assert result.transactions[0].subscription_id == sub.id
    # 同一周期重复通知
    again = sm.apply(result.aggregate, sm.RenewalSucceeded(start, end), now=NOW)
    assert again.changed is False


def test_renewal_failures_go_past_due_then_expire():
    sub = sm.apply(_active(), sm.RenewalFailed("card expired"), now=NOW).aggregate
    assert sub.status == SubscriptionStatus.PAST_DUE
    assert sub.cancelled_at is None
    sub = sm.apply(sub, sm.RenewalFailed("card expired"), now=NOW).aggregate
    assert sub.status == SubscriptionStatus.PAST_DUE
    result = sm.apply(sub, sm.RenewalFailed("card expired"), now=NOW)
    assert result.aggregate.status == SubscriptionStatus.EXPIRED
    assert result.aggregate.cancelled_at == NOW
    assert [e.event_type for e in result.events] == ["subscription.expired"]


def test_recovery_from_past_due():
    sub = sm.apply(_active(), sm.RenewalFailed(), now=NOW).aggregate
    start, end = sub.next_period()
    recovered = sm.apply(sub, sm.RenewalSucceeded(start, end), now=NOW).aggregate
    assert recovered.status == SubscriptionStatus.ACTIVE
    assert recovered.failed_renewals == 0


def test_cancel_at_period_end_then_materialize():
    scheduled = sm.apply(_active(), sm.CancelRequested(at_period_end=True, reason="too pricey"), now=NOW)
    sub = scheduled.aggregate
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.cancel_at_period_end is True
    assert sub.cancelled_at is None

    early = sm.apply(sub, sm.PeriodEnded(at=sub.current_period_end - timedelta(seconds=1)))
    assert early.changed is False

    ended = sm.apply(sub, sm.PeriodEnded(at=sub.current_period_end), now=sub.current_period_end)
    assert ended.aggregate.status == SubscriptionStatus.CANCELLED
    assert ended.aggregate.cancelled_at == sub.current_period_end


def test_immediate_cancel():
    result = sm.apply(_active(), sm.CancelRequested(at_period_end=False), now=NOW)
    assert result.aggregate.status == SubscriptionStatus.CANCELLED
    assert result.aggregate.ended_at == NOW


def test_expired_subscription_cannot_be_cancelled():
    expired = sm.apply(_subscription(), sm.IncompleteExpired(), now=NOW).aggregate
    with pytest.raises(DomainViolationException):
        sm.apply(expired, sm.CancelRequested())
    with pytest.raises(DomainViolationException):
        sm.apply(expired, sm.ActivationConfirmed())
