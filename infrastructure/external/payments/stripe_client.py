"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- The SDK is synchronous; calls run in a worker thread via ``anyio``.
- Idempotency keys are derived from our ids (``payment_id`` / ``refund_id``),
  so a retried create never produces a second charge or refund.
- Our ids travel in ``metadata`` and come back on every webhook, which lets
  notifications be matched without the provider id.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Mapping, Optional, TypeVar

import anyio
import stripe

from application.dtos.payments import (
    ProviderPaymentRequest,
    ProviderPaymentResult,
    ProviderRefundRequest,
    ProviderRefundResult,
    WebhookNotification,
)
from core.settings import PaymentTimeouts, StripeSettings, WebhookSettings
from domain.common.exceptions import DomainValidationException, ProviderPermanentError, ProviderTransientError
from infrastructure.external.payments.base import BasePaymentClient, header
from infrastructure.external.payments.signatures import verify_stripe_signature


T = TypeVar("T")

_PAYMENT_EVENTS = {
    "payment_intent.processing": "payment.processing",
    "payment_intent.requires_action": "payment.requires_action",
    "payment_intent.succeeded": "payment.succeeded",
    "payment_intent.payment_failed": "payment.failed",
    "payment_intent.canceled": "payment.cancelled",
}

_REFUND_STATUS = {
    "pending": "pending",
    "requires_action": "pending",
    "succeeded": "succeeded",
    "failed": "failed",
    "canceled": "failed",
}


def _epoch(value: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(int(value), tz=timezone.utc) if value else None


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(
        self,
        settings: StripeSettings,
        *,
        webhook: Optional[WebhookSettings] = None,
        timeouts: Optional[PaymentTimeouts] = None,
    ) -> None:
        super().__init__(timeouts=timeouts)
        self._settings = settings
        self._webhook = webhook or WebhookSettings()

    async def _call(self, fn: Callable[..., T], **kwargs: Any) -> T:
        options: dict[str, Any] = {"api_key": self._require_secret(self._settings.secret_key, "secret key")}
        if self._settings.api_version:
            options["stripe_version"] = self._settings.api_version
        try:
            return await anyio.to_thread.run_sync(partial(fn, **options, **kwargs))
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as exc:
            # idempotency keys make the retry safe
            raise ProviderTransientError(
                exc.user_message or str(exc), provider=self.provider, provider_code=exc.code
            ) from exc
        except stripe.StripeError as exc:
            raise ProviderPermanentError(
                exc.user_message or str(exc), provider=self.provider, provider_code=exc.code
            ) from exc

    def _intent_result(self, intent: Any) -> ProviderPaymentResult:
        error = getattr(intent, "last_payment_error", None)
        status = self._map_status(intent.status)
        if status == "pending" and error is not None:
            # a declined card sends the intent back to requires_payment_method
            status = "failed"
        return ProviderPaymentResult(
            provider=self.provider,
            provider_payment_id=intent.id,
            status=status,
            client_secret=getattr(intent, "client_secret", None),
            raw_status=intent.status,
            error_code=getattr(error, "code", None) if error is not None else None,
            error_message=getattr(error, "message", None) if error is not None else None,
        )

    async def create_payment(self, req: ProviderPaymentRequest) -> ProviderPaymentResult:
        metadata = {str(k): str(v) for k, v in (req.metadata or {}).items()}
        metadata.update({"payment_id": req.payment_id, "user_id": req.user_id})
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=self._to_minor(req.amount, req.currency),
            currency=req.currency.lower(),
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            idempotency_key=f"payment-{req.payment_id}",
        )
        result = self._intent_result(intent)
        self._log("stripe_payment_intent_created", payment_id=req.payment_id, status=result.raw_status)
        return result

    async def verify_payment(self, payment_id: str, provider_payment_id: Optional[str] = None) -> ProviderPaymentResult:
        if provider_payment_id:
            try:
                intent = await self._call(stripe.PaymentIntent.retrieve, id=provider_payment_id)
            except ProviderPermanentError as exc:
                if exc.provider_code != "resource_missing":
                    raise
                return ProviderPaymentResult(provider=self.provider, status="pending", found=False)
            return self._intent_result(intent)

        found = await self._call(stripe.PaymentIntent.search, query=f"metadata['payment_id']:'{payment_id}'", limit=1)
        if not found.data:
            return ProviderPaymentResult(provider=self.provider, status="pending", found=False)
        return self._intent_result(found.data[0])

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult:
        if not req.provider_payment_id:
            raise ProviderPermanentError("Payment has no Stripe PaymentIntent to refund", provider=self.provider)
        refund = await self._call(
            stripe.Refund.create,
            payment_intent=req.provider_payment_id,
            amount=self._to_minor(req.amount, req.currency),
            metadata={"payment_id": req.payment_id, "refund_id": req.refund_id, "reason": req.reason or ""},
            idempotency_key=f"refund-{req.refund_id}",
        )
        self._log("stripe_refund_created", payment_id=req.payment_id, refund_id=req.refund_id, status=refund.status)
        return ProviderRefundResult(
            provider=self.provider,
            refund_id=req.refund_id,
            provider_refund_id=refund.id,
            status=_REFUND_STATUS.get(refund.status, "pending"),
            error_message=getattr(refund, "failure_reason", None),
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification:
        secret = self._settings.webhook_secret
        if not secret:
            raise ProviderPermanentError("stripe webhook secret is not configured", provider=self.provider)
        signature = header(headers, "Stripe-Signature")
        verify_stripe_signature(body, signature, secret, tolerance=self._webhook.tolerance_seconds)
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise DomainValidationException("Malformed Stripe webhook payload") from exc
        return self._normalise(event, signature)

    def _normalise(self, event: dict, signature: Optional[str]) -> WebhookNotification:
        event_type = str(event.get("type", ""))
        obj = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        base: dict[str, Any] = {
            "provider": self.provider,
            "event_id": str(event.get("id")),
            "event_type": event_type,
            "signature": signature,
        }

        if event_type in _PAYMENT_EVENTS:
            error = obj.get("last_payment_error") or {}
            return WebhookNotification(
                **base,
                kind=_PAYMENT_EVENTS[event_type],
                payment_id=metadata.get("payment_id"),
                provider_payment_id=obj.get("id"),
                amount=self._from_minor(obj.get("amount"), obj.get("currency")),
                currency=(obj.get("currency") or "").upper() or None,
                error_code=error.get("decline_code") or error.get("code"),
                error_message=error.get("message"),
            )

        if event_type in ("refund.created", "refund.updated", "refund.failed"):
            status = "failed" if event_type == "refund.failed" else _REFUND_STATUS.get(obj.get("status"), "pending")
            kind = {"succeeded": "refund.succeeded", "failed": "refund.failed"}.get(status, "ignored")
            return WebhookNotification(
                **base,
                kind=kind,
                payment_id=metadata.get("payment_id"),
                provider_payment_id=obj.get("payment_intent"),
                refund_id=metadata.get("refund_id"),
                provider_refund_id=obj.get("id"),
                amount=self._from_minor(obj.get("amount"), obj.get("currency")),
                currency=(obj.get("currency") or "").upper() or None,
                error_message=obj.get("failure_reason"),
            )

        if event_type in ("invoice.paid", "invoice.payment_failed"):
            if obj.get("billing_reason") == "subscription_create":
                # the first period is settled through the PaymentIntent flow
                return WebhookNotification(**base)
            lines = (obj.get("lines") or {}).get("data") or []
            period = (lines[0].get("period") if lines else None) or {}
            sub_meta = (obj.get("subscription_details") or {}).get("metadata") or {}
            return WebhookNotification(
                **base,
                kind="subscription.renewed" if event_type == "invoice.paid" else "subscription.payment_failed",
                subscription_id=sub_meta.get("subscription_id") or metadata.get("subscription_id"),
                provider_subscription_id=obj.get("subscription"),
                provider_payment_id=obj.get("payment_intent"),
                amount=self._from_minor(obj.get("amount_paid"), obj.get("currency")),
                currency=(obj.get("currency") or "").upper() or None,
                period_start=_epoch(period.get("start")),
                period_end=_epoch(period.get("end")),
                error_message=(obj.get("last_finalization_error") or {}).get("message"),
            )

        if event_type == "customer.subscription.deleted":
            return WebhookNotification(
                **base,
                kind="subscription.cancelled",
                subscription_id=metadata.get("subscription_id"),
                provider_subscription_id=obj.get("id"),
            )

        return WebhookNotification(**base)
