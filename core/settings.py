"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Loaded once at startup; components receive the group they need through their
constructors instead of importing ``payment_settings`` themselves.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class PaymentTimeouts(_Frozen):
    connect: float = 2.0
    read: float = 8.0
    total: float = 10.0


class PaymentRetry(_Frozen):
    max_attempts: int = 3
    base_backoff: float = 0.2
    max_backoff: float = 2.0


class SelectionSettings(_Frozen):
    currency_affinity: dict[str, str] = Field(
        default_factory=lambda: {"NGN": "paystack", "GHS": "paystack", "ZAR": "paystack", "KES": "paystack"}
    )
    region_affinity: dict[str, str] = Field(
        default_factory=lambda: {"NG": "paystack", "GH": "paystack", "ZA": "paystack", "KE": "paystack"}
    )


class WebhookSettings(_Frozen):
    tolerance_seconds: int = 300
    max_attempts: int = 5
    process_inline: bool = True  # False: 交给 Celery 任务处理


class IdempotencySettings(_Frozen):
    ttl_hours: int = 24


class OutboxSettings(_Frozen):
    batch_size: int = 100
    lease_seconds: int = 30


class ConcurrencySettings(_Frozen):
    max_attempts: int = 3


class SubscriptionSettings(_Frozen):
    max_renewal_failures: int = 3
    incomplete_expiry_hours: int = 23


class ReconciliationSettings(_Frozen):
    stale_after_minutes: int = 15
    fail_after_hours: int = 24
    batch_size: int = 100


class StripeSettings(_Frozen):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None


class PaystackSettings(_Frozen):
    secret_key: Optional[str] = None
    base_url: str = "https://api.paystack.co"


class PaymentSettings(BaseSettings):
    default_provider: str = "stripe"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    idempotency: IdempotencySettings = Field(default_factory=IdempotencySettings)
    outbox: OutboxSettings = Field(default_factory=OutboxSettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)
    subscription: SubscriptionSettings = Field(default_factory=SubscriptionSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    paystack: PaystackSettings = Field(default_factory=PaystackSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
        frozen=True,
    )


payment_settings = PaymentSettings()
