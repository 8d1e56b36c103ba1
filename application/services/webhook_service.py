"""
Webhook intake and processing.

Intake verifies the signature, normalises the payload and persists it keyed
by ``(provider, provider_event_id)``; a unique violation means the delivery
is a duplicate and is acknowledged without processing. Processing dispatches
the stored notification to the handler registered for its kind and records
the outcome on the event row, so failures can be retried later.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import anyio

from application.dtos.payments import WebhookNotification
from application.ports.payment_gateway import PaymentGateway, resolve_gateway
from core.logging_config import get_logger
from core.settings import WebhookSettings
from domain.common.exceptions import AggregateNotFoundException, SignatureInvalidException
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.webhook.entity import WebhookEvent, WebhookStatus
from domain.webhook.repository import DuplicateWebhookEvent


logger = get_logger(__name__)

UowFactory = Callable[..., AbstractUnitOfWork]
NotificationHandler = Callable[[WebhookNotification], Awaitable[Any]]


@dataclass(frozen=True)
class WebhookAck:
    event_id: str
    provider_event_id: str
    duplicate: bool = False


class WebhookService:
    def __init__(
        self,
        uow_factory: UowFactory,
        gateways: Mapping[str, PaymentGateway],
        *,
        settings: Optional[WebhookSettings] = None,
        dispatch: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateways = gateways
        self._settings = settings or WebhookSettings()
        self._dispatch = dispatch
        self._handlers: Dict[str, NotificationHandler] = {}

    def register(self, kind: str, handler: NotificationHandler) -> None:
        self._handlers[kind] = handler

    def set_dispatcher(self, dispatch: Optional[Callable[[str], Any]]) -> None:
        self._dispatch = dispatch

    async def admit(self, provider: str, headers: Mapping[str, Any], body: bytes) -> WebhookAck:
        gateway = resolve_gateway(self._gateways, provider)
        try:
            notification = gateway.parse_webhook(headers, body)
        except SignatureInvalidException as exc:
            logger.warning("webhook_signature_invalid", provider=provider, reason=exc.message)
            raise

        event = WebhookEvent(
            provider=notification.provider,
            provider_event_id=notification.event_id,
            event_type=notification.event_type,
            payload=body.decode("utf-8", errors="replace"),
            signature=notification.signature,
            notification=notification.model_dump(mode="json"),
        )
        try:
            async with self._uow_factory() as uow:
                await uow.webhook_events.add(event)
        except DuplicateWebhookEvent:
            async with self._uow_factory(readonly=True) as uow:
                existing = await uow.webhook_events.get_by_provider_event_id(provider, notification.event_id)
            logger.info("webhook_duplicate", provider=provider, provider_event_id=notification.event_id)
            return WebhookAck(
                event_id=existing.id if existing else event.id,
                provider_event_id=notification.event_id,
                duplicate=True,
            )

        logger.info(
            "webhook_received",
            provider=provider,
            provider_event_id=notification.event_id,
            event_type=notification.event_type,
            kind=notification.kind,
        )
        if self._settings.process_inline:
            await self.process(event.id)
        elif self._dispatch is not None:
            await self._enqueue(event)
        return WebhookAck(event_id=event.id, provider_event_id=notification.event_id)

    async def _enqueue(self, event: WebhookEvent) -> None:
        # The row is committed; a broker outage leaves it PENDING for retry_failed.
        try:
            await anyio.to_thread.run_sync(self._dispatch, event.id)
        except Exception as exc:
            logger.error(
                "webhook_dispatch_failed",
                event_id=event.id,
                provider=event.provider,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def process(self, event_id: str) -> WebhookStatus:
        async with self._uow_factory(readonly=True) as uow:
            event = await uow.webhook_events.get_by_id(event_id)
        if event is None:
            raise AggregateNotFoundException("webhook_event", event_id)
        if event.status in (WebhookStatus.PROCESSED, WebhookStatus.DEAD):
            return event.status

        notification = WebhookNotification.model_validate(event.notification)
        handler = self._handlers.get(notification.kind)
        error: Optional[str] = None
        try:
            if handler is None:
                logger.info("webhook_ignored", event_id=event.id, event_type=event.event_type)
            else:
                await handler(notification)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.error(
                "webhook_processing_failed",
                event_id=event.id,
                provider=event.provider,
                event_type=event.event_type,
                exc_info=True,
            )

        return await self._record_outcome(event, error)

    async def _record_outcome(self, event: WebhookEvent, error: Optional[str]) -> WebhookStatus:
        """Write the outcome only over the status/retry_count that was read.

        When another worker recorded an outcome in between, the row is
        reloaded and this outcome is applied on top of it, so failure counts
        add up and a PROCESSED or DEAD row is never overwritten.
        """
        for _ in range(self._settings.max_attempts + 1):
            seen_status, seen_retries = event.status, event.retry_count
            if error is None:
                event.mark_processed(utcnow())
            else:
                event.mark_failed(error, self._settings.max_attempts)

            async with self._uow_factory() as uow:
                written = await uow.webhook_events.update(
                    event, expected_status=seen_status, expected_retry_count=seen_retries
                )
            if written:
                if error is not None:
                    logger.info(
                        "webhook_failure_recorded",
                        event_id=event.id,
                        retry_count=event.retry_count,
                        status=event.status.value,
                    )
                return event.status

            async with self._uow_factory(readonly=True) as uow:
                current = await uow.webhook_events.get_by_id(event.id)
            logger.info(
                "webhook_outcome_raced",
                event_id=event.id,
                current_status=current.status.value,
                current_retry_count=current.retry_count,
            )
            if current.status in (WebhookStatus.PROCESSED, WebhookStatus.DEAD):
                return current.status
            event = current
        return event.status

    async def retry_failed(self, limit: int = 100) -> int:
        """Reprocess PENDING/FAILED events that have been sitting for at least a minute."""
        async with self._uow_factory(readonly=True) as uow:
            events = await uow.webhook_events.list_retryable(utcnow() - timedelta(minutes=1), limit)
        processed = 0
        for event in events:
            if await self.process(event.id) == WebhookStatus.PROCESSED:
                processed += 1
        return processed
