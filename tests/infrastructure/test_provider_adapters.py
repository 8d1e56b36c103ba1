import hashlib
import hmac
import json
import time
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import ProviderPaymentRequest, ProviderRefundRequest
from core.settings import PaymentSettings, PaystackSettings, StripeSettings
from domain.common.exceptions import (
    ProviderAmbiguousError,
    ProviderPermanentError,
    ProviderTransientError,
    SignatureInvalidException,
)
from infrastructure.external.payments import build_gateways, get_payment_gateway
from infrastructure.external.payments.paystack_client import PaystackClient
from infrastructure.external.payments.signatures import (
    paystack_signature,
    verify_paystack_signature,
    verify_stripe_signature,
)
from infrastructure.external.payments.stripe_client import StripeClient


STRIPE_SECRET = "whsec_test"
PAYSTACK_SECRET = "sk_test_paystack"


def stripe_header(body: bytes, secret: str = STRIPE_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{body.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _stripe_event(event_id: str, event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode("utf-8")


# ---- signatures ----


def test_stripe_signature_accepts_valid_header():
    body = b'{"id":"evt_1"}'
    verify_stripe_signature(body, stripe_header(body), STRIPE_SECRET, tolerance=300)


@pytest.mark.parametrize(
    "header",
    [None, "", "t=1,v1=deadbeef", stripe_header(b'{"id":"evt_2"}')],
)
def test_stripe_signature_rejects_bad_header(header):
    with pytest.raises(SignatureInvalidException):
        verify_stripe_signature(b'{"id":"evt_1"}', header, STRIPE_SECRET, tolerance=300)


def test_stripe_signature_rejects_stale_timestamp():
    body = b'{"id":"evt_1"}'
    old = stripe_header(body, timestamp=int(time.time()) - 3600)
    with pytest.raises(SignatureInvalidException):
        verify_stripe_signature(body, old, STRIPE_SECRET, tolerance=300)


def test_paystack_signature_is_hmac_sha512():
    body = b'{"event":"charge.success"}'
    expected = hmac.new(PAYSTACK_SECRET.encode(), body, hashlib.sha512).hexdigest()
    assert paystack_signature(body, PAYSTACK_SECRET) == expected
    verify_paystack_signature(body, expected.upper(), PAYSTACK_SECRET)
    with pytest.raises(SignatureInvalidException):
        verify_paystack_signature(body + b" ", expected, PAYSTACK_SECRET)
    with pytest.raises(SignatureInvalidException):
        verify_paystack_signature(body, None, PAYSTACK_SECRET)


# ---- stripe webhook normalisation ----


@pytest.fixture
def stripe_client() -> StripeClient:
    return StripeClient(StripeSettings(secret_key="sk_test", webhook_secret=STRIPE_SECRET))


def test_stripe_payment_succeeded_webhook(stripe_client):
    body = _stripe_event(
        "evt_1",
        "payment_intent.succeeded",
        {"id": "pi_1", "amount": 9999, "currency": "usd", "metadata": {"payment_id": "pay_1"}},
    )
    n = stripe_client.parse_webhook({"Stripe-Signature": stripe_header(body)}, body)
    assert n.event_id == "evt_1"
    assert n.kind == "payment.succeeded"
    assert n.payment_id == "pay_1"
    assert n.provider_payment_id == "pi_1"
    assert n.amount == Decimal("99.99")
    assert n.currency == "USD"


def test_stripe_refund_webhook_carries_our_refund_id(stripe_client):
    body = _stripe_event(
        "evt_2",
        "refund.updated",
        {
            "id": "re_stripe",
            "status": "succeeded",
            "amount": 500,
            "currency": "usd",
            "payment_intent": "pi_1",
            "metadata": {"payment_id": "pay_1", "refund_id": "re_ours"},
        },
    )
    n = stripe_client.parse_webhook({"stripe-signature": stripe_header(body)}, body)
    assert n.kind == "refund.succeeded"
    assert n.refund_id == "re_ours"
    assert n.amount == Decimal("5.00")


def test_stripe_unknown_event_is_ignored(stripe_client):
    body = _stripe_event("evt_3", "customer.created", {"id": "cus_1"})
    n = stripe_client.parse_webhook({"Stripe-Signature": stripe_header(body)}, body)
    assert n.kind == "ignored"


def test_stripe_tampered_body_is_rejected(stripe_client):
    body = _stripe_event("evt_1", "payment_intent.succeeded", {"id": "pi_1"})
    header = stripe_header(body)
    with pytest.raises(SignatureInvalidException):
        stripe_client.parse_webhook({"Stripe-Signature": header}, body.replace(b"pi_1", b"pi_2"))


def test_stripe_without_secret_fails_at_call_time():
    client = StripeClient(StripeSettings())
    with pytest.raises(ProviderPermanentError):
        client.parse_webhook({}, b"{}")


# ---- paystack over httpx ----


def _paystack(handler) -> PaystackClient:
    return PaystackClient(PaystackSettings(secret_key=PAYSTACK_SECRET), transport=httpx.MockTransport(handler))


def _request(**metadata) -> ProviderPaymentRequest:
    return ProviderPaymentRequest(
        payment_id="pay_1", user_id="u1", amount=Decimal("150.00"), currency="NGN", metadata=metadata
    )


@pytest.mark.asyncio
async def test_paystack_initialize_uses_minor_units_and_reference():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"status": True, "data": {"reference": "pay_1", "authorization_url": "https://checkout/x"}},
        )

    client = _paystack(handler)
    result = await client.create_payment(_request(email="a@example.com"))
    await client.aclose()

    assert seen["auth"] == f"Bearer {PAYSTACK_SECRET}"
    assert seen["body"]["amount"] == 15000
    assert seen["body"]["reference"] == "pay_1"
    assert result.status == "requires_action"
    assert result.client_secret == "https://checkout/x"


@pytest.mark.asyncio
async def test_paystack_requires_email():
    client = _paystack(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ProviderPermanentError):
        await client.create_payment(_request())


@pytest.mark.asyncio
async def test_paystack_duplicate_reference_falls_back_to_verify():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/transaction/initialize"):
            return httpx.Response(400, json={"status": False, "message": "Duplicate Transaction Reference"})
        return httpx.Response(200, json={"status": True, "data": {"reference": "pay_1", "status": "success"}})

    client = _paystack(handler)
    result = await client.create_payment(_request(email="a@example.com"))
    await client.aclose()
    assert result.status == "succeeded"
    assert result.provider_payment_id == "pay_1"


@pytest.mark.asyncio
async def test_paystack_classifies_transport_failures():
    def server_error(request):
        return httpx.Response(502, json={})

    client = _paystack(server_error)
    with pytest.raises(ProviderTransientError):
        await client.verify_payment("pay_1")
    await client.aclose()

    def read_timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = _paystack(read_timeout)
    with pytest.raises(ProviderAmbiguousError):
        await client.refund(
            ProviderRefundRequest(payment_id="pay_1", refund_id="re_1", amount=Decimal("1.00"), currency="NGN")
        )
    with pytest.raises(ProviderTransientError):
        await client.verify_payment("pay_1")
    await client.aclose()


def test_paystack_webhook_derives_event_id():
    client = PaystackClient(PaystackSettings(secret_key=PAYSTACK_SECRET))
    body = json.dumps(
        {"event": "charge.success", "data": {"id": 42, "reference": "pay_1", "amount": 15000, "currency": "NGN"}}
    ).encode("utf-8")
    n = client.parse_webhook({"x-paystack-signature": paystack_signature(body, PAYSTACK_SECRET)}, body)
    assert n.event_id == "charge.success:42"
    assert n.kind == "payment.succeeded"
    assert n.payment_id == "pay_1"
    assert n.amount == Decimal("150.00")


def test_registry_builds_both_providers_without_keys():
    gateways = build_gateways(PaymentSettings())
    assert set(gateways) == {"stripe", "paystack"}
    with pytest.raises(ValueError):
        get_payment_gateway("alipay", PaymentSettings())
