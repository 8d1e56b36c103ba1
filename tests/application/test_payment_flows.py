import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from application.dtos.payments import CancelPaymentCommand, CreatePaymentCommand, RefundPaymentCommand
from domain.common.exceptions import (
    AggregateNotFoundException,
    DomainViolationException,
    ProviderAmbiguousError,
    ProviderPermanentError,
    ProviderTransientError,
    RefundExceedsRefundableException,
)
from domain.common.timeutils import utcnow


def _cmd(amount: str = "100.00", currency: str = "USD", **kwargs) -> CreatePaymentCommand:
    return CreatePaymentCommand(user_id="u1", amount=Decimal(amount), currency=currency, **kwargs)


@pytest.mark.asyncio
async def test_create_payment_confirmed_by_provider(container, stripe_stub, unpublished, ledger):
    view = await container.payments.create_payment(_cmd(region="US"))

    assert view.id.startswith("pay_")
    assert view.provider == "stripe"
    assert view.status == "succeeded"
    assert view.provider_payment_id == f"pi_{view.id}"
    assert stripe_stub.count("create_payment") == 1

    txns = await ledger(view.id)
    assert [(t.kind.value, t.amount) for t in txns] == [("charge", Decimal("100.00"))]
    events = [e.event_type for e in await unpublished(view.id)]
    assert events == ["payment.created", "payment.processing", "payment.succeeded"]


@pytest.mark.asyncio
async def test_currency_affinity_pins_paystack(container, gateways):
    view = await container.payments.create_payment(_cmd(currency="NGN", metadata={"email": "a@example.com"}))
    assert view.provider == "paystack"
    assert gateways["paystack"].count("create_payment") == 1
    assert gateways["stripe"].count("create_payment") == 0


@pytest.mark.asyncio
async def test_requires_action_keeps_client_secret(container, stripe_stub):
    stripe_stub.create_status = "requires_action"
    view = await container.payments.create_payment(_cmd())
    assert view.status == "requires_action"
    assert view.client_secret == f"secret_{view.id}"


@pytest.mark.asyncio
async def test_permanent_failure_fails_immediately(container, stripe_stub):
    stripe_stub.create_error = ProviderPermanentError("card rejected", provider="stripe", provider_code="card_declined")

    with pytest.raises(ProviderPermanentError) as exc:
        await container.payments.create_payment(_cmd())

    assert stripe_stub.count("create_payment") == 1
    assert exc.value.aggregate["status"] == "failed"
    assert exc.value.aggregate["error_code"] == "card_declined"


@pytest.mark.asyncio
async def test_transient_failure_retries_then_fails(container, stripe_stub, ledger):
    stripe_stub.create_error = ProviderTransientError("connection reset", provider="stripe")

    with pytest.raises(ProviderTransientError) as exc:
        await container.payments.create_payment(_cmd())

    assert stripe_stub.count("create_payment") == 3
    payment = exc.value.aggregate
    assert payment["status"] == "failed"
    assert payment["error_code"] == "provider_unavailable"
    assert await ledger(payment["id"]) == []


@pytest.mark.asyncio
async def test_ambiguous_create_is_reconciled_with_verify(container, stripe_stub):
    stripe_stub.create_error = ProviderAmbiguousError("timed out", provider="stripe")
    stripe_stub.verify_status = "succeeded"

    view = await container.payments.create_payment(_cmd())

    assert view.status == "succeeded"
    assert stripe_stub.count("verify_payment") == 1


@pytest.mark.asyncio
async def test_ambiguous_create_unknown_to_provider_stays_pending(container, stripe_stub):
    stripe_stub.create_error = ProviderAmbiguousError("timed out", provider="stripe")
    stripe_stub.verify_found = False

    view = await container.payments.create_payment(_cmd())

    assert view.status == "pending"


@pytest.mark.asyncio
async def test_reconcile_stale_settles_open_payments(container, stripe_stub):
    stripe_stub.create_status = "processing"
    view = await container.payments.create_payment(_cmd())
    assert view.status == "processing"

    stripe_stub.verify_status = "succeeded"
    reconciled = await container.payments.reconcile_stale(now=utcnow() + timedelta(minutes=20))

    assert reconciled == 1
    assert (await container.payments.get_payment(view.id)).status == "succeeded"


@pytest.mark.asyncio
async def test_reconcile_times_out_hopeless_payments(container, stripe_stub):
    stripe_stub.create_status = "processing"
    view = await container.payments.create_payment(_cmd())

    stripe_stub.verify_found = False
    await container.payments.reconcile_stale(now=utcnow() + timedelta(hours=25))

    payment = await container.payments.get_payment(view.id)
    assert payment.status == "failed"
    assert payment.error_code == "timeout"


@pytest.mark.asyncio
async def test_cancel_open_payment(container, stripe_stub):
    stripe_stub.create_status = "pending"
    view = await container.payments.create_payment(_cmd())
    assert view.status == "pending"

    cancelled = await container.payments.cancel_payment(view.id, CancelPaymentCommand(reason="changed mind"))
    assert cancelled.status == "cancelled"

    with pytest.raises(DomainViolationException) as exc:
        await container.payments.refund_payment(view.id, RefundPaymentCommand())
    assert exc.value.aggregate["status"] == "cancelled"


@pytest.mark.asyncio
async def test_partial_then_full_refund(container, ledger):
    view = await container.payments.create_payment(_cmd())

    partial = await container.payments.refund_payment(view.id, RefundPaymentCommand(amount=Decimal("30.00")))
    assert partial.status == "partially_refunded"
    assert partial.refunded_amount == Decimal("30.00")

    full = await container.payments.refund_payment(view.id, RefundPaymentCommand())
    assert full.status == "refunded"
    assert full.refunded_amount == Decimal("100.00")

    kinds = [(t.kind.value, t.amount) for t in await ledger(view.id)]
    assert kinds == [("charge", Decimal("100.00")), ("partial_refund", Decimal("30.00")), ("partial_refund", Decimal("70.00"))]


@pytest.mark.asyncio
async def test_refund_exceeding_balance_is_rejected(container):
    view = await container.payments.create_payment(_cmd())

    with pytest.raises(RefundExceedsRefundableException) as exc:
        await container.payments.refund_payment(view.id, RefundPaymentCommand(amount=Decimal("100.01")))

    assert exc.value.aggregate["status"] == "succeeded"
    assert Decimal(exc.value.aggregate["refunded_amount"]) == 0


@pytest.mark.asyncio
async def test_rejected_refund_releases_reservation(container, stripe_stub):
    view = await container.payments.create_payment(_cmd())
    stripe_stub.refund_status = "failed"

    with pytest.raises(ProviderPermanentError):
        await container.payments.refund_payment(view.id, RefundPaymentCommand(amount=Decimal("40.00")))

    payment = await container.payments.get_payment(view.id)
    assert payment.status == "succeeded"
    assert [r.status for r in payment.refunds] == ["failed"]

    stripe_stub.refund_status = "succeeded"
    refunded = await container.payments.refund_payment(view.id, RefundPaymentCommand())
    assert refunded.status == "refunded"


@pytest.mark.asyncio
async def test_ambiguous_refund_holds_reservation(container, stripe_stub):
    view = await container.payments.create_payment(_cmd())
    stripe_stub.refund_error = ProviderAmbiguousError("timed out", provider="stripe")

    pending = await container.payments.refund_payment(view.id, RefundPaymentCommand(amount=Decimal("60.00")))
    assert pending.status == "succeeded"
    assert [r.status for r in pending.refunds] == ["pending"]

    stripe_stub.refund_error = None
    with pytest.raises(RefundExceedsRefundableException):
        await container.payments.refund_payment(view.id, RefundPaymentCommand(amount=Decimal("50.00")))


@pytest.mark.asyncio
async def test_concurrent_refunds_never_both_succeed(container, stripe_stub, ledger):
    view = await container.payments.create_payment(_cmd())

    results = await asyncio.gather(
        container.payments.refund_payment(view.id, RefundPaymentCommand(amount=Decimal("60.00"))),
        container.payments.refund_payment(view.id, RefundPaymentCommand(amount=Decimal("60.00"))),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], RefundExceedsRefundableException)
    assert stripe_stub.count("refund") == 1

    payment = await container.payments.get_payment(view.id)
    assert payment.refunded_amount == Decimal("60.00")
    assert [t.kind.value for t in await ledger(view.id)] == ["charge", "partial_refund"]


@pytest.mark.asyncio
async def test_unknown_payment(container):
    with pytest.raises(AggregateNotFoundException):
        await container.payments.get_payment("pay_missing")
    with pytest.raises(AggregateNotFoundException):
        await container.payments.list_transactions("pay_missing")
