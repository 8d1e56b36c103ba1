"""
Paystack adapter over the REST API with httpx.

Our payment id is used as the Paystack transaction ``reference``, so verify
works before the provider id is known and a retried initialize is rejected
as a duplicate reference instead of creating a second transaction.
Paystack webhooks carry no event id; one is derived from the event name and
the object id, which is stable across redeliveries.
"""
from __future__ import annotations

import json
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import (
    ProviderPaymentRequest,
    ProviderPaymentResult,
    ProviderRefundRequest,
    ProviderRefundResult,
    WebhookNotification,
)
from core.settings import PaymentTimeouts, PaystackSettings
from domain.common.exceptions import DomainValidationException, ProviderPermanentError
from infrastructure.external.payments.base import BasePaymentClient, header
from infrastructure.external.payments.signatures import verify_paystack_signature


_REFUND_STATUS = {
    "pending": "pending",
    "processing": "pending",
    "needs-attention": "pending",
    "processed": "succeeded",
    "failed": "failed",
    "reversed": "failed",
}


class PaystackClient(BasePaymentClient):
    provider = "paystack"

    def __init__(
        self,
        settings: PaystackSettings,
        *,
        timeouts: Optional[PaymentTimeouts] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeouts=timeouts)
        self._settings = settings
        self._transport = transport

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self.timeouts,
            transport=self._transport,
        )

    def _auth(self) -> dict[str, str]:
        secret = self._require_secret(self._settings.secret_key, "secret key")
        return {"Authorization": f"Bearer {secret}"}

    async def _api(self, method: str, path: str, *, mutating: bool, **kwargs: Any) -> tuple[int, dict]:
        response = await self._send(method, path, mutating=mutating, headers=self._auth(), **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        return response.status_code, body

    def _reject(self, status_code: int, body: dict) -> ProviderPermanentError:
        return ProviderPermanentError(
            body.get("message") or f"paystack returned HTTP {status_code}",
            provider=self.provider,
            provider_code=str(status_code),
        )

    def _transaction_result(self, data: dict) -> ProviderPaymentResult:
        raw = str(data.get("status") or "")
        status = self._map_status(raw)
        return ProviderPaymentResult(
            provider=self.provider,
            provider_payment_id=data.get("reference"),
            status=status,
            raw_status=raw,
            error_code=raw if status == "failed" else None,
            error_message=data.get("gateway_response") if status == "failed" else None,
        )

    async def create_payment(self, req: ProviderPaymentRequest) -> ProviderPaymentResult:
        email = (req.metadata or {}).get("email")
        if not email:
            raise ProviderPermanentError("Paystack requires metadata.email", provider=self.provider)
        status_code, body = await self._api(
            "POST",
            "/transaction/initialize",
            mutating=True,
            json={
                "email": email,
                "amount": self._to_minor(req.amount, req.currency),
                "currency": req.currency,
                "reference": req.payment_id,
                "metadata": {"payment_id": req.payment_id, "user_id": req.user_id},
            },
        )
        if status_code >= 400:
            if "duplicate" in str(body.get("message", "")).lower():
                # an earlier attempt already created the transaction
                return await self.verify_payment(req.payment_id, req.payment_id)
            raise self._reject(status_code, body)

        data = body.get("data") or {}
        self._log("paystack_transaction_initialized", payment_id=req.payment_id)
        return ProviderPaymentResult(
            provider=self.provider,
            provider_payment_id=data.get("reference") or req.payment_id,
            status="requires_action",
            client_secret=data.get("authorization_url"),
            raw_status="initialized",
        )

    async def verify_payment(self, payment_id: str, provider_payment_id: Optional[str] = None) -> ProviderPaymentResult:
        reference = provider_payment_id or payment_id
        status_code, body = await self._api("GET", f"/transaction/verify/{reference}", mutating=False)
        if status_code == 404 or (status_code == 400 and "not found" in str(body.get("message", "")).lower()):
            return ProviderPaymentResult(provider=self.provider, status="pending", found=False)
        if status_code >= 400:
            raise self._reject(status_code, body)
        return self._transaction_result(body.get("data") or {})

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult:
        status_code, body = await self._api(
            "POST",
            "/refund",
            mutating=True,
            json={
                "transaction": req.provider_payment_id or req.payment_id,
                "amount": self._to_minor(req.amount, req.currency),
                "currency": req.currency,
                "merchant_note": req.reason or req.refund_id,
            },
        )
        if status_code >= 400:
            raise self._reject(status_code, body)
        data = body.get("data") or {}
        raw = str(data.get("status") or "pending")
        self._log("paystack_refund_created", payment_id=req.payment_id, refund_id=req.refund_id, status=raw)
        return ProviderRefundResult(
            provider=self.provider,
            refund_id=req.refund_id,
            provider_refund_id=str(data["id"]) if data.get("id") is not None else None,
            status=_REFUND_STATUS.get(raw, "pending"),
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification:
        secret = self._require_secret(self._settings.secret_key, "secret key")
        signature = header(headers, "x-paystack-signature")
        verify_paystack_signature(body, signature, secret)
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise DomainValidationException("Malformed Paystack webhook payload") from exc

        event_type = str(event.get("event", ""))
        data = event.get("data") or {}
        currency = data.get("currency")
        object_id = data.get("id") or data.get("reference") or data.get("subscription_code")
        base: dict[str, Any] = {
            "provider": self.provider,
            "event_id": f"{event_type}:{object_id}",
            "event_type": event_type,
            "signature": signature,
        }

        if event_type == "charge.success":
            return WebhookNotification(
                **base,
                kind="payment.succeeded",
                payment_id=data.get("reference"),
                provider_payment_id=data.get("reference"),
                amount=self._from_minor(data.get("amount"), currency),
                currency=currency,
            )
        if event_type in ("refund.processed", "refund.failed"):
            transaction = data.get("transaction_reference") or (data.get("transaction") or {}).get("reference")
            return WebhookNotification(
                **base,
                kind="refund.succeeded" if event_type == "refund.processed" else "refund.failed",
                payment_id=transaction,
                provider_payment_id=transaction,
                provider_refund_id=str(data["id"]) if data.get("id") is not None else None,
                amount=self._from_minor(data.get("amount"), currency),
                currency=currency,
                error_message=data.get("merchant_note") if event_type == "refund.failed" else None,
            )
        if event_type == "invoice.payment_failed":
            subscription = data.get("subscription") or {}
            return WebhookNotification(
                **base,
                kind="subscription.payment_failed",
                provider_subscription_id=subscription.get("subscription_code"),
                error_message=data.get("description"),
            )
        if event_type == "subscription.disable":
            return WebhookNotification(
                **base,
                kind="subscription.cancelled",
                provider_subscription_id=data.get("subscription_code"),
            )
        return WebhookNotification(**base)
