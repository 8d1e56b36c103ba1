import asyncio
import json
from decimal import Decimal

import pytest

from application.dtos.payments import CreatePaymentCommand, RefundPaymentCommand
from application.services.webhook_service import WebhookService
from core.settings import WebhookSettings
from domain.common.exceptions import SignatureInvalidException
from domain.webhook.entity import WebhookStatus
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork, unit_of_work_factory


def _body(**fields) -> bytes:
    return json.dumps(fields).encode("utf-8")


async def _stored(container, provider: str, provider_event_id: str):
    async with SQLAlchemyUnitOfWork(container.session_factory, readonly=True) as uow:
        return await uow.webhook_events.get_by_provider_event_id(provider, provider_event_id)


async def _processing_payment(container, stripe_stub):
    stripe_stub.create_status = "processing"
    return await container.payments.create_payment(
        CreatePaymentCommand(user_id="u1", amount=Decimal("25.00"), currency="USD")
    )


@pytest.mark.asyncio
async def test_duplicate_deliveries_apply_once(container, stripe_stub, stub_headers, unpublished, ledger):
    payment = await _processing_payment(container, stripe_stub)
    body = _body(
        event_id="evt_1",
        event_type="payment_intent.succeeded",
        kind="payment.succeeded",
        payment_id=payment.id,
        provider_payment_id=payment.provider_payment_id,
    )

    acks = [await container.webhooks.admit("stripe", stub_headers, body) for _ in range(5)]

    assert [a.duplicate for a in acks] == [False, True, True, True, True]
    assert {a.provider_event_id for a in acks} == {"evt_1"}
    assert len({a.event_id for a in acks}) == 1

    current = await container.payments.get_payment(payment.id)
    assert current.status == "succeeded"
    assert [t.kind.value for t in await ledger(payment.id)] == ["charge"]
    succeeded = [e for e in await unpublished(payment.id) if e.event_type == "payment.succeeded"]
    assert len(succeeded) == 1
    assert (await _stored(container, "stripe", "evt_1")).status == WebhookStatus.PROCESSED


@pytest.mark.asyncio
async def test_distinct_events_with_same_state_are_echoes(container, stripe_stub, stub_headers, ledger):
    payment = await _processing_payment(container, stripe_stub)
    for event_id in ("evt_a", "evt_b"):
        await container.webhooks.admit(
            "stripe",
            stub_headers,
            _body(event_id=event_id, event_type="payment_intent.succeeded", kind="payment.succeeded", payment_id=payment.id),
        )
    assert len(await ledger(payment.id)) == 1
    assert (await _stored(container, "stripe", "evt_b")).status == WebhookStatus.PROCESSED


@pytest.mark.asyncio
async def test_invalid_signature_mutates_nothing(container, stripe_stub):
    payment = await _processing_payment(container, stripe_stub)
    body = _body(event_id="evt_x", event_type="payment_intent.succeeded", kind="payment.succeeded", payment_id=payment.id)

    with pytest.raises(SignatureInvalidException):
        await container.webhooks.admit("stripe", {"x-stub-signature": "forged"}, body)

    assert await _stored(container, "stripe", "evt_x") is None
    assert (await container.payments.get_payment(payment.id)).status == "processing"


@pytest.mark.asyncio
async def test_failed_processing_is_retried_until_dead(container, stub_headers):
    body = _body(event_id="evt_orphan", event_type="payment_intent.succeeded", kind="payment.succeeded", payment_id="pay_unknown")

    ack = await container.webhooks.admit("stripe", stub_headers, body)
    stored = await _stored(container, "stripe", "evt_orphan")
    assert stored.status == WebhookStatus.FAILED
    assert stored.retry_count == 1
    assert "pay_unknown" in stored.processing_error

    statuses = [await container.webhooks.process(ack.event_id) for _ in range(4)]
    assert statuses == [WebhookStatus.FAILED] * 3 + [WebhookStatus.DEAD]
    assert await container.webhooks.process(ack.event_id) == WebhookStatus.DEAD
    assert (await _stored(container, "stripe", "evt_orphan")).retry_count == 5


@pytest.mark.asyncio
async def test_unhandled_kind_is_acknowledged_and_processed(container, stub_headers):
    await container.webhooks.admit("stripe", stub_headers, _body(event_id="evt_cus", event_type="customer.created"))
    assert (await _stored(container, "stripe", "evt_cus")).status == WebhookStatus.PROCESSED


@pytest.mark.asyncio
async def test_deferred_processing_dispatches_event_id(container, gateways, stub_headers, stripe_stub):
    dispatched = []
    service = WebhookService(
        unit_of_work_factory(container.session_factory),
        gateways,
        settings=WebhookSettings(process_inline=False),
        dispatch=dispatched.append,
    )
    service.register("payment.succeeded", container.payments.apply_notification)
    payment = await _processing_payment(container, stripe_stub)

    ack = await service.admit(
        "stripe",
        stub_headers,
        _body(event_id="evt_later", event_type="payment_intent.succeeded", kind="payment.succeeded", payment_id=payment.id),
    )

    assert dispatched == [ack.event_id]
    assert (await _stored(container, "stripe", "evt_later")).status == WebhookStatus.PENDING
    assert await service.process(ack.event_id) == WebhookStatus.PROCESSED
    assert (await container.payments.get_payment(payment.id)).status == "succeeded"


@pytest.mark.asyncio
async def test_refund_webhook_settles_pending_refund(container, stripe_stub, stub_headers):
    stripe_stub.create_status = "succeeded"
    payment = await container.payments.create_payment(
        CreatePaymentCommand(user_id="u1", amount=Decimal("80.00"), currency="USD")
    )
    stripe_stub.refund_status = "pending"
    pending = await container.payments.refund_payment(payment.id, RefundPaymentCommand(amount=Decimal("80.00")))
    (refund,) = pending.refunds
    assert refund.status == "pending"

    await container.webhooks.admit(
        "stripe",
        stub_headers,
        _body(
            event_id="evt_refund",
            event_type="refund.updated",
            kind="refund.succeeded",
            payment_id=payment.id,
            refund_id=refund.refund_id,
            provider_refund_id=refund.provider_refund_id,
            amount="80.00",
            currency="USD",
        ),
    )

    settled = await container.payments.get_payment(payment.id)
    assert settled.status == "refunded"
    assert settled.refunded_amount == Decimal("80.00")


@pytest.mark.asyncio
async def test_concurrent_deliveries_apply_once(container, stripe_stub, stub_headers, unpublished, ledger):
    payment = await _processing_payment(container, stripe_stub)
    body = _body(
        event_id="evt_burst",
        event_type="payment_intent.succeeded",
        kind="payment.succeeded",
        payment_id=payment.id,
        provider_payment_id=payment.provider_payment_id,
    )

    acks = await asyncio.gather(*(container.webhooks.admit("stripe", stub_headers, body) for _ in range(4)))

    assert sorted(a.duplicate for a in acks) == [False, True, True, True]
    assert len({a.event_id for a in acks}) == 1
    assert [t.kind.value for t in await ledger(payment.id)] == ["charge"]
    succeeded = [e for e in await unpublished(payment.id) if e.event_type == "payment.succeeded"]
    assert len(succeeded) == 1
    assert (await container.payments.get_payment(payment.id)).status == "succeeded"


@pytest.mark.asyncio
async def test_broker_outage_still_acknowledges(container, gateways, stub_headers, stripe_stub):
    def broken_dispatch(event_id: str) -> None:
        raise ConnectionError("redis unavailable")

    service = WebhookService(
        unit_of_work_factory(container.session_factory),
        gateways,
        settings=WebhookSettings(process_inline=False),
        dispatch=broken_dispatch,
    )
    service.register("payment.succeeded", container.payments.apply_notification)
    payment = await _processing_payment(container, stripe_stub)

    ack = await service.admit(
        "stripe",
        stub_headers,
        _body(event_id="evt_outage", event_type="payment_intent.succeeded", kind="payment.succeeded", payment_id=payment.id),
    )

    assert ack.duplicate is False
    assert (await _stored(container, "stripe", "evt_outage")).status == WebhookStatus.PENDING
    assert await service.process(ack.event_id) == WebhookStatus.PROCESSED


def _racing_service(container, gateways, concurrent_outcome):
    """Service whose handler lets another worker record an outcome first, then fails."""

    async def handler(notification):
        async with SQLAlchemyUnitOfWork(container.session_factory) as uow:
            stored = await uow.webhook_events.get_by_provider_event_id("stripe", notification.event_id)
            seen_status, seen_retries = stored.status, stored.retry_count
            concurrent_outcome(stored)
            assert await uow.webhook_events.update(
                stored, expected_status=seen_status, expected_retry_count=seen_retries
            )
        raise RuntimeError("this worker failed")

    service = WebhookService(unit_of_work_factory(container.session_factory), gateways)
    service.register("payment.succeeded", handler)
    return service


@pytest.mark.asyncio
async def test_concurrent_failures_are_both_counted(container, gateways, stub_headers):
    service = _racing_service(container, gateways, lambda e: e.mark_failed("RuntimeError: other worker", 5))

    await service.admit("stripe", stub_headers, _body(event_id="evt_race_1", event_type="x", kind="payment.succeeded"))

    stored = await _stored(container, "stripe", "evt_race_1")
    assert stored.status == WebhookStatus.FAILED
    assert stored.retry_count == 2
    assert "this worker failed" in stored.processing_error


@pytest.mark.asyncio
async def test_failure_never_overwrites_processed(container, gateways, stub_headers):
    service = _racing_service(container, gateways, lambda e: e.mark_processed())

    await service.admit("stripe", stub_headers, _body(event_id="evt_race_2", event_type="x", kind="payment.succeeded"))

    stored = await _stored(container, "stripe", "evt_race_2")
    assert stored.status == WebhookStatus.PROCESSED
    assert stored.retry_count == 0


@pytest.mark.asyncio
async def test_stale_outcome_is_not_written(container, stub_headers):
    await container.webhooks.admit("stripe", stub_headers, _body(event_id="evt_cus_2", event_type="customer.created"))
    stored = await _stored(container, "stripe", "evt_cus_2")
    assert stored.status == WebhookStatus.PROCESSED

    stored.mark_failed("late failure", 5)
    async with SQLAlchemyUnitOfWork(container.session_factory) as uow:
        written = await uow.webhook_events.update(
            stored, expected_status=WebhookStatus.PENDING, expected_retry_count=0
        )

    assert written is False
    assert (await _stored(container, "stripe", "evt_cus_2")).status == WebhookStatus.PROCESSED
