"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Dict, Iterable

from application.ports.payment_gateway import PaymentGateway
from core.settings import PaymentSettings


SUPPORTED_PROVIDERS = ("stripe", "paystack")


def get_payment_gateway(provider: str, settings: PaymentSettings) -> PaymentGateway:
    name = provider.lower()
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient(settings.stripe, webhook=settings.webhook, timeouts=settings.timeouts)
    if name == "paystack":
        from .paystack_client import PaystackClient
        return PaystackClient(settings.paystack, timeouts=settings.timeouts)
    raise ValueError(f"Unsupported payment provider: {name}")


def build_gateways(settings: PaymentSettings, providers: Iterable[str] = SUPPORTED_PROVIDERS) -> Dict[str, PaymentGateway]:
    """One client per provider, keyed by provider name."""
    return {name: get_payment_gateway(name, settings) for name in providers}


async def close_gateways(gateways: Dict[str, PaymentGateway]) -> None:
    for gateway in gateways.values():
        aclose = getattr(gateway, "aclose", None)
        if aclose is not None:
            await aclose()
