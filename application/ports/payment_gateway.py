"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    ProviderPaymentRequest,
    ProviderPaymentResult,
    ProviderRefundRequest,
    ProviderRefundResult,
    WebhookNotification,
)
from domain.common.exceptions import UnknownProviderException


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations raise ``ProviderTransientError`` / ``ProviderPermanentError``
    and never retry on their own; the orchestrator owns retry and timeout.
    ``parse_webhook`` verifies the signature before anything else and raises
    ``SignatureInvalidException`` on mismatch.
    """

    provider: str

    async def create_payment(self, req: ProviderPaymentRequest) -> ProviderPaymentResult: ...

    async def verify_payment(self, payment_id: str, provider_payment_id: Optional[str] = None) -> ProviderPaymentResult:
        """Look up by provider id, falling back to our payment id as the reference.

        Returns ``found=False`` when the provider has no record of the payment.
        """
        ...

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult: ...

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification: ...


def resolve_gateway(gateways: Mapping[str, PaymentGateway], provider: str) -> PaymentGateway:
    """Look up the gateway pinned on a record; unknown names are a client error."""
    gateway = gateways.get((provider or "").lower())
    if gateway is None:
        raise UnknownProviderException(provider)
    return gateway
