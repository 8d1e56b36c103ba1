"""
Base payment client implementing shared concerns: http, error mapping, logging,
status mapping and minor-unit conversion.

Concrete providers subclass and implement provider-specific logic. Clients do
not retry: ``ProviderCaller`` in the application layer owns retry and the
overall timeout, so every failure here is classified exactly once.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from application.dtos.payments import (
    ProviderPaymentRequest,
    ProviderPaymentResult,
    ProviderRefundRequest,
    ProviderRefundResult,
    WebhookNotification,
)
from core.logging_config import get_logger
from core.settings import PaymentTimeouts
from domain.common.exceptions import ProviderAmbiguousError, ProviderPermanentError, ProviderTransientError
from domain.common.money import Money, currency_exponent
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(self, *, timeouts: Optional[PaymentTimeouts] = None) -> None:
        self._timeouts_cfg = timeouts or PaymentTimeouts()
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg.total,
            connect=self._timeouts_cfg.connect,
            read=self._timeouts_cfg.read,
        )

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeouts)

    @asynccontextmanager
    async def client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is None:
            self._client = self._build_client()
        # Keep open for reuse; explicit aclose() will close.
        yield self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _send(self, method: str, url: str, *, mutating: bool, **kwargs: Any) -> httpx.Response:
        """Send one request and classify transport failures.

        A connect error never reached the provider and is safe to retry. Any
        other transport failure on a mutating call may have been applied.
        """
        async with self.client() as http:
            try:
                response = await http.request(method, url, **kwargs)
            except httpx.ConnectError as exc:
                raise ProviderTransientError(f"{self.provider} unreachable: {exc}", provider=self.provider) from exc
            except httpx.TransportError as exc:
                if mutating:
                    raise ProviderAmbiguousError(
                        f"{self.provider} request failed mid-flight: {exc}", provider=self.provider
                    ) from exc
                raise ProviderTransientError(f"{self.provider} request failed: {exc}", provider=self.provider) from exc
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderTransientError(
                f"{self.provider} returned HTTP {response.status_code}",
                provider=self.provider,
                provider_code=str(response.status_code),
            )
        return response

    # Default implementations raise to force override where needed
    async def create_payment(self, req: ProviderPaymentRequest) -> ProviderPaymentResult:
        raise NotImplementedError

    async def verify_payment(self, payment_id: str, provider_payment_id: Optional[str] = None) -> ProviderPaymentResult:
        raise NotImplementedError

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult:
        raise NotImplementedError

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification:
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        status = mapping.get(provider_status)
        if status is None:
            logger.warning("provider_status_unmapped", provider=self.provider, provider_status=provider_status)
            return "processing"
        return status

    def _require_secret(self, secret: Optional[str], name: str) -> str:
        if not secret:
            raise ProviderPermanentError(f"{self.provider} {name} is not configured", provider=self.provider)
        return secret

    @staticmethod
    def _to_minor(amount: Decimal, currency: str) -> int:
        return Money(amount, currency).to_minor_units()

    @staticmethod
    def _from_minor(minor: Optional[int], currency: Optional[str]) -> Optional[Decimal]:
        if minor is None or not currency:
            return None
        return Decimal(int(minor)).scaleb(-currency_exponent(currency))

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )


def header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts and Starlette headers."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value
