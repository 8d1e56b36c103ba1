"""HTTP surface: status codes, envelopes and the Idempotency-Key contract."""
import json

import httpx
import pytest
import pytest_asyncio

from domain.common.exceptions import ProviderPermanentError
from main import create_app


@pytest_asyncio.fixture
async def client(container):
    app = create_app(container)
    # ASGITransport 不触发 lifespan，直接注入容器
    app.state.container = container
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


PAYMENT = {"user_id": "u1", "amount": "49.90", "currency": "USD", "region": "US"}


async def _create(client, **overrides):
    resp = await client.post("/api/v1/payments", json={**PAYMENT, **overrides})
    assert resp.status_code == 201
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}


@pytest.mark.asyncio
async def test_create_payment_replays_with_same_key(client, stripe_stub):
    headers = {"Idempotency-Key": "order-1001"}
    first = await client.post("/api/v1/payments", json=PAYMENT, headers=headers)
    second = await client.post("/api/v1/payments", json=PAYMENT, headers=headers)

    assert first.status_code == second.status_code == 201
    assert "Idempotent-Replayed" not in first.headers
    assert second.headers["Idempotent-Replayed"] == "true"
    assert second.json()["data"]["id"] == first.json()["data"]["id"]
    assert first.json()["data"]["amount"] == "49.90"
    assert stripe_stub.count("create_payment") == 1

    changed = await client.post("/api/v1/payments", json={**PAYMENT, "amount": "50.00"}, headers=headers)
    assert changed.status_code == 422


@pytest.mark.asyncio
async def test_declined_payment_replays_the_error(client, stripe_stub):
    stripe_stub.create_error = ProviderPermanentError("do not honor", provider="stripe", provider_code="card_declined")
    headers = {"Idempotency-Key": "order-1002"}

    first = await client.post("/api/v1/payments", json=PAYMENT, headers=headers)
    second = await client.post("/api/v1/payments", json=PAYMENT, headers=headers)

    assert first.status_code == second.status_code == 402
    assert first.json()["data"]["status"] == "failed"
    assert second.json()["data"]["id"] == first.json()["data"]["id"]
    assert stripe_stub.count("create_payment") == 1


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected(client):
    resp = await client.post("/api/v1/payments", json={**PAYMENT, "amount": "-1"})
    assert resp.status_code == 422
    resp = await client.post("/api/v1/payments", json={**PAYMENT, "currency": "usd1"})
    assert resp.status_code in (400, 422)


@pytest.mark.asyncio
async def test_get_payment_and_ledger(client):
    created = await _create(client)

    resp = await client.get(f"/api/v1/payments/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "succeeded"

    ledger = await client.get(f"/api/v1/payments/{created['id']}/transactions")
    assert [(t["kind"], t["amount"]) for t in ledger.json()["data"]] == [("charge", "49.90")]


@pytest.mark.asyncio
async def test_unknown_payment_is_404(client):
    resp = await client.get("/api/v1/payments/pay_missing")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_refund_and_over_refund(client):
    created = await _create(client)
    url = f"/api/v1/payments/{created['id']}/refunds"

    partial = await client.post(url, json={"amount": "10.00"})
    assert partial.status_code == 200
    assert partial.json()["data"]["status"] == "partially_refunded"

    over = await client.post(url, json={"amount": "40.00"})
    assert over.status_code == 409
    body = over.json()
    assert body["data"]["refunded_amount"] == "10.00"
    assert body["error"]["details"]["refundable"] == "39.90"


@pytest.mark.asyncio
async def test_cancel_pending_then_cancel_succeeded_conflicts(client, stripe_stub):
    stripe_stub.create_status = "pending"
    pending = await _create(client)
    resp = await client.post(f"/api/v1/payments/{pending['id']}/cancel", json={"reason": "user abandoned"})
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "cancelled"

    stripe_stub.create_status = "succeeded"
    done = await _create(client)
    resp = await client.post(f"/api/v1/payments/{done['id']}/cancel")
    assert resp.status_code == 409
    assert resp.json()["data"]["status"] == "succeeded"


@pytest.mark.asyncio
async def test_webhook_acknowledgements(client, stripe_stub, stub_headers):
    stripe_stub.create_status = "processing"
    created = await _create(client)
    body = json.dumps(
        {"event_id": "evt_http_1", "event_type": "payment_intent.succeeded", "kind": "payment.succeeded", "payment_id": created["id"]}
    )

    for _ in range(2):
        resp = await client.post("/api/v1/webhooks/stripe", content=body, headers=stub_headers)
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "eventId": "evt_http_1"}

    forged = await client.post("/api/v1/webhooks/stripe", content=body, headers={"x-stub-signature": "nope"})
    assert forged.status_code == 400
    assert forged.json() == {"received": False}

    unknown = await client.post("/api/v1/webhooks/alipay", content=body, headers=stub_headers)
    assert unknown.status_code == 404

    resp = await client.get(f"/api/v1/payments/{created['id']}")
    assert resp.json()["data"]["status"] == "succeeded"


@pytest.mark.asyncio
async def test_subscription_lifecycle_over_http(client):
    resp = await client.post(
        "/api/v1/subscriptions",
        json={"user_id": "u1", "plan_id": "pro", "amount": "19.00", "currency": "USD", "trial_days": 7},
    )
    assert resp.status_code == 201
    sub = resp.json()["data"]
    assert sub["status"] == "trialing"

    resp = await client.post(f"/api/v1/subscriptions/{sub['id']}/cancel", json={"at_period_end": False})
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "cancelled"

    resp = await client.get(f"/api/v1/subscriptions/{sub['id']}")
    assert resp.json()["data"]["ended_at"] is not None
