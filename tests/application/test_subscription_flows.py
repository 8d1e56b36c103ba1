import json
from datetime import timedelta
from decimal import Decimal

import pytest

from application.dtos.payments import CancelSubscriptionCommand, CreateSubscriptionCommand
from domain.common.exceptions import DomainViolationException
from domain.common.timeutils import utcnow
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def _cmd(trial_days: int = 0) -> CreateSubscriptionCommand:
    return CreateSubscriptionCommand(
        user_id="u1", plan_id="pro", amount=Decimal("19.00"), currency="USD", trial_days=trial_days
    )


def _webhook(event_id: str, kind: str, subscription_id: str, **fields) -> bytes:
    body = {"event_id": event_id, "event_type": kind, "kind": kind, "subscription_id": subscription_id}
    body.update(fields)
    return json.dumps(body).encode("utf-8")


async def _subscription_ledger(container, subscription_id):
    async with SQLAlchemyUnitOfWork(container.session_factory, readonly=True) as uow:
        return await uow.transactions.list_by_subscription(subscription_id)


@pytest.mark.asyncio
async def test_initial_payment_activates_subscription(container, stripe_stub, unpublished):
    view = await container.subscriptions.create_subscription(_cmd())

    assert view.status == "active"
    assert view.initial_payment is not None
    assert view.initial_payment.status == "succeeded"
    assert view.initial_payment.subscription_id == view.id
    events = [e.event_type for e in await unpublished(view.id)]
    assert events == ["subscription.created", "subscription.activated"]


@pytest.mark.asyncio
async def test_unpaid_subscription_expires(container, stripe_stub):
    stripe_stub.create_status = "pending"
    view = await container.subscriptions.create_subscription(_cmd())
    assert view.status == "incomplete"

    assert await container.subscriptions.expire_incomplete(now=utcnow() + timedelta(hours=1)) == 0
    assert await container.subscriptions.expire_incomplete(now=utcnow() + timedelta(hours=24)) == 1
    expired = await container.subscriptions.get_subscription(view.id)
    assert expired.status == "expired"
    assert expired.ended_at is not None


@pytest.mark.asyncio
async def test_trial_becomes_active_when_it_ends(container, stripe_stub):
    view = await container.subscriptions.create_subscription(_cmd(trial_days=14))
    assert view.status == "trialing"
    assert view.initial_payment is None
    assert stripe_stub.count("create_payment") == 0

    assert await container.subscriptions.end_trials(now=utcnow() + timedelta(days=15)) == 1
    assert (await container.subscriptions.get_subscription(view.id)).status == "active"


@pytest.mark.asyncio
async def test_cancel_at_period_end_is_materialized_later(container):
    view = await container.subscriptions.create_subscription(_cmd(trial_days=7))

    scheduled = await container.subscriptions.cancel_subscription(
        view.id, CancelSubscriptionCommand(at_period_end=True, reason="too expensive")
    )
    assert scheduled.status == "trialing"
    assert scheduled.cancel_at_period_end is True

    assert await container.subscriptions.materialize_period_end(now=utcnow()) == 0
    assert await container.subscriptions.end_trials(now=utcnow() + timedelta(days=8)) == 0
    assert await container.subscriptions.materialize_period_end(now=utcnow() + timedelta(days=8)) == 1

    cancelled = await container.subscriptions.get_subscription(view.id)
    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "too expensive"


@pytest.mark.asyncio
async def test_immediate_cancel_then_cancel_is_noop(container):
    view = await container.subscriptions.create_subscription(_cmd())
    first = await container.subscriptions.cancel_subscription(view.id, CancelSubscriptionCommand(at_period_end=False))
    again = await container.subscriptions.cancel_subscription(view.id, CancelSubscriptionCommand(at_period_end=False))

    assert first.status == again.status == "cancelled"
    assert again.version == first.version


@pytest.mark.asyncio
async def test_renewal_webhook_extends_period(container, stub_headers):
    view = await container.subscriptions.create_subscription(_cmd())
    body = _webhook("evt_renew_1", "subscription.renewed", view.id, provider_payment_id="in_1")

    await container.webhooks.admit("stripe", stub_headers, body)
    await container.webhooks.admit("stripe", stub_headers, body)

    renewed = await container.subscriptions.get_subscription(view.id)
    assert renewed.status == "active"
    assert renewed.current_period_start == view.current_period_end
    assert renewed.current_period_end > view.current_period_end
    charges = await _subscription_ledger(container, view.id)
    assert [t.provider_reference for t in charges if t.payment_id is None] == ["in_1"]


@pytest.mark.asyncio
async def test_repeated_renewal_failures_expire_subscription(container, stub_headers):
    view = await container.subscriptions.create_subscription(_cmd())

    statuses = []
    for n in range(3):
        await container.webhooks.admit(
            "stripe", stub_headers, _webhook(f"evt_fail_{n}", "subscription.payment_failed", view.id)
        )
        statuses.append((await container.subscriptions.get_subscription(view.id)).status)

    assert statuses == ["past_due", "past_due", "expired"]
    with pytest.raises(DomainViolationException) as exc:
        await container.subscriptions.cancel_subscription(view.id, CancelSubscriptionCommand(at_period_end=True))
    assert exc.value.aggregate["status"] == "expired"


@pytest.mark.asyncio
async def test_past_due_recovers_on_renewal(container, stub_headers):
    view = await container.subscriptions.create_subscription(_cmd())
    await container.webhooks.admit("stripe", stub_headers, _webhook("evt_f", "subscription.payment_failed", view.id))
    await container.webhooks.admit("stripe", stub_headers, _webhook("evt_r", "subscription.renewed", view.id))

    assert (await container.subscriptions.get_subscription(view.id)).status == "active"
