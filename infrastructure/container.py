"""
Composition root: builds the services once per process from settings.

The API lifespan and the Celery tasks both go through ``build_container`` so
the wiring (gateways, selector, webhook handler registry, outbox relay) is the
same everywhere. Tests pass their own session factory, gateways and publisher.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from application.ports.payment_gateway import PaymentGateway
from application.services.idempotency_service import IdempotencyService
from application.services.outbox_relay import OutboxRelay
from application.services.payment_service import PaymentService
from application.services.provider_calls import ProviderCaller
from application.services.provider_selector import ProviderSelector
from application.services.subscription_service import SubscriptionService
from application.services.webhook_service import WebhookService
from core.config import Settings
from core.logging_config import get_logger
from core.settings import PaymentSettings
from infrastructure.database import create_engine_from_settings, create_session_factory
from infrastructure.external.messaging import (
    JsonSerializer,
    MessagingEventPublisher,
    Publisher,
    create_publisher,
    messaging_config_from_settings,
)
from infrastructure.external.messaging.middlewares import LoggingMiddleware
from infrastructure.external.payments import build_gateways, close_gateways
from infrastructure.unit_of_work import unit_of_work_factory


logger = get_logger(__name__)

PAYMENT_KINDS = (
    "payment.processing",
    "payment.requires_action",
    "payment.succeeded",
    "payment.failed",
    "payment.cancelled",
    "refund.succeeded",
    "refund.failed",
)
SUBSCRIPTION_KINDS = (
    "subscription.renewed",
    "subscription.payment_failed",
    "subscription.cancelled",
)


@dataclass
class Container:
    settings: Settings
    payment_settings: PaymentSettings
    session_factory: async_sessionmaker[AsyncSession]
    gateways: Dict[str, PaymentGateway]
    publisher: Publisher
    payments: PaymentService
    subscriptions: SubscriptionService
    webhooks: WebhookService
    idempotency: IdempotencyService
    relay: OutboxRelay
    engine: Optional[AsyncEngine] = None

    async def aclose(self) -> None:
        await close_gateways(self.gateways)
        self.publisher.close()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("container_closed")


def build_container(
    settings: Settings,
    payment_settings: PaymentSettings,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    gateways: Optional[Dict[str, PaymentGateway]] = None,
    publisher: Optional[Publisher] = None,
) -> Container:
    engine: Optional[AsyncEngine] = None
    if session_factory is None:
        engine = create_engine_from_settings(settings.database)
        session_factory = create_session_factory(engine)
    uow_factory = unit_of_work_factory(session_factory)

    if gateways is None:
        gateways = build_gateways(payment_settings)
    if publisher is None:
        messaging_cfg = messaging_config_from_settings(settings.messaging, settings.kafka)
        publisher = create_publisher(messaging_cfg, JsonSerializer(), [LoggingMiddleware()])

    selector = ProviderSelector(gateways.keys(), payment_settings.default_provider, payment_settings.selection)
    caller = ProviderCaller(payment_settings.retry, payment_settings.timeouts)
    attempts = payment_settings.concurrency.max_attempts

    payments = PaymentService(
        uow_factory,
        gateways,
        selector,
        caller,
        concurrency_attempts=attempts,
        reconciliation=payment_settings.reconciliation,
    )
    subscriptions = SubscriptionService(
        uow_factory,
        selector,
        payments,
        concurrency_attempts=attempts,
        settings=payment_settings.subscription,
    )
    webhooks = WebhookService(uow_factory, gateways, settings=payment_settings.webhook)
    for kind in PAYMENT_KINDS:
        webhooks.register(kind, payments.apply_notification)
    for kind in SUBSCRIPTION_KINDS:
        webhooks.register(kind, subscriptions.apply_notification)

    idempotency = IdempotencyService(uow_factory, ttl=timedelta(hours=payment_settings.idempotency.ttl_hours))
    relay = OutboxRelay(
        uow_factory,
        MessagingEventPublisher(publisher),
        topic_prefix=settings.messaging.topic_prefix,
        settings=payment_settings.outbox,
    )

    logger.info(
        "container_built",
        providers=sorted(gateways),
        default_provider=payment_settings.default_provider,
        messaging=settings.messaging.provider,
    )
    return Container(
        settings=settings,
        payment_settings=payment_settings,
        session_factory=session_factory,
        gateways=gateways,
        publisher=publisher,
        payments=payments,
        subscriptions=subscriptions,
        webhooks=webhooks,
        idempotency=idempotency,
        relay=relay,
        engine=engine,
    )
