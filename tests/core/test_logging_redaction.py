from core.logging_config import redact_sensitive


def test_secrets_are_masked():
    event = {
        "event": "provider_call",
        "client_secret": "pi_123_secret_abc",
        "headers": {"Stripe-Signature": "t=1,v1=abc", "content-type": "application/json"},
        "payment_id": "pay_1",
        "signature": None,
    }

    out = redact_sensitive(None, "info", event)

    assert out["client_secret"] == "***"
    assert out["headers"] == {"Stripe-Signature": "***", "content-type": "application/json"}
    assert out["payment_id"] == "pay_1"
    assert out["signature"] is None
