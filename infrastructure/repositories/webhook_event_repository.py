"""
Webhook 事件仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.webhook.entity import WebhookEvent, WebhookStatus
from domain.webhook.repository import DuplicateWebhookEvent, WebhookEventRepository
from infrastructure.models.webhook_event import WebhookEventModel


class SQLAlchemyWebhookEventRepository(WebhookEventRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookEventModel) -> WebhookEvent:
        return WebhookEvent(
            id=model.id,
            provider=model.provider,
            provider_event_id=model.provider_event_id,
            event_type=model.event_type,
            payload=model.payload,
            signature=model.signature,
            notification=model.notification or {},
            status=WebhookStatus(model.status),
            retry_count=model.retry_count,
            processing_error=model.processing_error,
            received_at=model.received_at,
            processed_at=model.processed_at,
        )

    async def add(self, event: WebhookEvent) -> WebhookEvent:
        self.session.add(
            WebhookEventModel(
                id=event.id,
                provider=event.provider,
                provider_event_id=event.provider_event_id,
                event_type=event.event_type,
                payload=event.payload,
                signature=event.signature,
                notification=event.notification,
                status=event.status.value,
                retry_count=event.retry_count,
                processing_error=event.processing_error,
                received_at=event.received_at,
                processed_at=event.processed_at,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError:
            raise DuplicateWebhookEvent(event.provider, event.provider_event_id)
        return event

    async def get_by_id(self, event_id: str) -> Optional[WebhookEvent]:
        result = await self.session.execute(select(WebhookEventModel).where(WebhookEventModel.id == event_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_provider_event_id(self, provider: str, provider_event_id: str) -> Optional[WebhookEvent]:
        result = await self.session.execute(
            select(WebhookEventModel).where(
                WebhookEventModel.provider == provider,
                WebhookEventModel.provider_event_id == provider_event_id,
            )
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(
        self, event: WebhookEvent, *, expected_status: WebhookStatus, expected_retry_count: int
    ) -> bool:
        result = await self.session.execute(
            update(WebhookEventModel)
            .where(
                WebhookEventModel.id == event.id,
                WebhookEventModel.status == expected_status.value,
                WebhookEventModel.retry_count == expected_retry_count,
            )
            .values(
                status=event.status.value,
                retry_count=event.retry_count,
                processing_error=event.processing_error,
                processed_at=event.processed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_retryable(self, received_before: datetime, limit: int = 100) -> List[WebhookEvent]:
        result = await self.session.execute(
            select(WebhookEventModel)
            .where(
                WebhookEventModel.status.in_([WebhookStatus.PENDING.value, WebhookStatus.FAILED.value]),
                WebhookEventModel.received_at < received_before,
            )
            .order_by(WebhookEventModel.received_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
