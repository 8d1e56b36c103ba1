from datetime import timedelta
from decimal import Decimal

import pytest

from application.dtos.payments import CreatePaymentCommand, CreateSubscriptionCommand
from application.services.outbox_relay import OutboxRelay
from core.settings import OutboxSettings
from domain.common.timeutils import utcnow
from infrastructure.external.messaging import JsonSerializer, MessagingEventPublisher
from infrastructure.external.messaging.exceptions import PublishError
from infrastructure.external.messaging.providers.inmemory import InMemoryPublisher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork, unit_of_work_factory


class FlakyPublisher(InMemoryPublisher):
    def __init__(self):
        super().__init__(JsonSerializer())
        self.down = False

    def publish(self, topic, env):
        if self.down:
            raise PublishError("broker unavailable")
        return super().publish(topic, env)


def _relay(container, publisher, worker_id=None) -> OutboxRelay:
    return OutboxRelay(
        unit_of_work_factory(container.session_factory),
        MessagingEventPublisher(publisher),
        topic_prefix="paysync",
        settings=OutboxSettings(batch_size=100, lease_seconds=30),
        worker_id=worker_id,
    )


async def _create(container, amount="10.00"):
    return await container.payments.create_payment(
        CreatePaymentCommand(user_id="u1", amount=Decimal(amount), currency="USD")
    )


@pytest.mark.asyncio
async def test_drain_publishes_in_order_once(container, publisher, unpublished):
    payment = await _create(container)

    published = await container.relay.drain()

    assert published == 3
    messages = publisher.decoded("paysync.payment")
    assert [m["eventType"] for m in messages] == ["payment.created", "payment.processing", "payment.succeeded"]
    assert set(messages[0]) == {"eventId", "eventType", "timestamp", "aggregateId", "payload"}
    assert all(m["aggregateId"] == payment.id for m in messages)
    assert messages[-1]["payload"]["status"] == "succeeded"
    keys = {key for key, _, _ in publisher.messages["paysync.payment"]}
    assert keys == {payment.id.encode("utf-8")}

    assert await unpublished() == []
    assert await container.relay.drain() == 0
    assert len(publisher.decoded("paysync.payment")) == 3


@pytest.mark.asyncio
async def test_events_survive_transport_outage(container, unpublished):
    flaky = FlakyPublisher()
    relay = _relay(container, flaky)
    payment = await _create(container)

    flaky.down = True
    report = await relay.drain_once()

    assert report.published == 0
    assert report.failed == 1
    assert report.deferred == 2
    pending = await unpublished(payment.id)
    assert len(pending) == 3
    assert pending[0].attempts == 1
    assert pending[0].last_error == "broker unavailable"

    flaky.down = False
    assert await relay.drain() == 3
    assert [m["eventType"] for m in flaky.decoded("paysync.payment")] == [
        "payment.created",
        "payment.processing",
        "payment.succeeded",
    ]
    assert await unpublished() == []


@pytest.mark.asyncio
async def test_leased_rows_are_skipped_by_other_workers(container, unpublished):
    await _create(container)
    now = utcnow()
    async with SQLAlchemyUnitOfWork(container.session_factory) as uow:
        claimed = await uow.outbox.claim_batch("worker-a", now, now + timedelta(seconds=30), 100)
    assert len(claimed) == 3

    other = InMemoryPublisher(JsonSerializer())
    report = await _relay(container, other, worker_id="worker-b").drain_once()
    assert report.published == 0
    assert other.decoded("paysync.payment") == []
    assert len(await unpublished()) == 3


@pytest.mark.asyncio
async def test_subscription_events_use_their_own_topic(container, publisher):
    sub = await container.subscriptions.create_subscription(
        CreateSubscriptionCommand(user_id="u1", plan_id="pro", amount=Decimal("9.99"), currency="USD", trial_days=7)
    )
    await container.relay.drain()

    (message,) = publisher.decoded("paysync.subscription")
    assert message["eventType"] == "subscription.created"
    assert message["aggregateId"] == sub.id
