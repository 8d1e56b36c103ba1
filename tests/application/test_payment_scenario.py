"""End to end: a card payment confirmed asynchronously by the provider."""
import json
from decimal import Decimal

import pytest

from application.dtos.payments import CreatePaymentCommand


@pytest.mark.asyncio
async def test_usd_payment_confirmed_by_duplicated_webhook(container, stripe_stub, stub_headers, publisher, ledger):
    stripe_stub.create_status = "pending"
    view = await container.payments.create_payment(
        CreatePaymentCommand(user_id="u1", amount=Decimal("99.99"), currency="USD", region="US")
    )
    assert view.provider == "stripe"
    assert view.status == "pending"

    body = json.dumps(
        {
            "event_id": "evt_usd_1",
            "event_type": "payment_intent.succeeded",
            "kind": "payment.succeeded",
            "payment_id": view.id,
            "provider_payment_id": view.provider_payment_id,
            "amount": "99.99",
            "currency": "USD",
        }
    ).encode("utf-8")
    first = await container.webhooks.admit("stripe", stub_headers, body)
    second = await container.webhooks.admit("stripe", stub_headers, body)
    assert (first.duplicate, second.duplicate) == (False, True)

    final = await container.payments.get_payment(view.id)
    assert final.status == "succeeded"
    assert [(t.kind.value, t.amount) for t in await ledger(view.id)] == [("charge", Decimal("99.99"))]

    await container.relay.drain()
    messages = publisher.decoded("paysync.payment")
    succeeded = [m for m in messages if m["eventType"] == "payment.succeeded"]
    assert len(succeeded) == 1
    assert succeeded[0]["aggregateId"] == view.id
    assert succeeded[0]["payload"]["amount"] == "99.99"
    assert succeeded[0]["payload"]["currency"] == "USD"
