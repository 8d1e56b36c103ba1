"""
Webhook signature verification.

- Stripe: ``Stripe-Signature: t=<unix>,v1=<hex>`` where v1 is HMAC-SHA256 of
  ``"<t>.<body>"``; verified by the stripe SDK with a timestamp tolerance.
- Paystack: ``x-paystack-signature`` is the hex HMAC-SHA512 of the raw body
  keyed with the secret key.

Both raise ``SignatureInvalidException``; nothing is parsed before this passes.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional

import stripe

from domain.common.exceptions import SignatureInvalidException


def verify_stripe_signature(body: bytes, signature: Optional[str], secret: str, *, tolerance: int) -> None:
    if not signature:
        raise SignatureInvalidException("Missing Stripe-Signature header", provider="stripe")
    try:
        stripe.WebhookSignature.verify_header(body.decode("utf-8"), signature, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise SignatureInvalidException(str(exc), provider="stripe") from exc
    except UnicodeDecodeError as exc:
        raise SignatureInvalidException("Webhook body is not valid UTF-8", provider="stripe") from exc


def paystack_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_paystack_signature(body: bytes, signature: Optional[str], secret: str) -> None:
    if not signature:
        raise SignatureInvalidException("Missing x-paystack-signature header", provider="paystack")
    if not hmac.compare_digest(paystack_signature(body, secret), signature.strip().lower()):
        raise SignatureInvalidException("Paystack signature mismatch", provider="paystack")
