"""
订阅仓储实现
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrencyConflictException
from domain.subscription.entity import BillingInterval, Subscription, SubscriptionStatus
from domain.subscription.repository import SubscriptionRepository
from infrastructure.models.subscription import SubscriptionModel


logger = get_logger(__name__)


class SQLAlchemySubscriptionRepository(SubscriptionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SubscriptionModel) -> Subscription:
        return Subscription(
            id=model.id,
            user_id=model.user_id,
            plan_id=model.plan_id,
            status=SubscriptionStatus(model.status),
            provider=model.provider,
            interval=BillingInterval(model.interval),
            interval_count=model.interval_count,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            current_period_start=model.current_period_start,
            current_period_end=model.current_period_end,
            provider_subscription_id=model.provider_subscription_id,
            trial_start=model.trial_start,
            trial_end=model.trial_end,
            cancel_at_period_end=model.cancel_at_period_end,
            cancel_reason=model.cancel_reason,
            cancelled_at=model.cancelled_at,
            ended_at=model.ended_at,
            failed_renewals=model.failed_renewals,
            metadata=model.extra_metadata or {},
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _columns(entity: Subscription) -> dict:
        return {
            "status": entity.status.value,
            "provider_subscription_id": entity.provider_subscription_id,
            "current_period_start": entity.current_period_start,
            "current_period_end": entity.current_period_end,
            "trial_start": entity.trial_start,
            "trial_end": entity.trial_end,
            "cancel_at_period_end": entity.cancel_at_period_end,
            "cancel_reason": entity.cancel_reason,
            "cancelled_at": entity.cancelled_at,
            "ended_at": entity.ended_at,
            "failed_renewals": entity.failed_renewals,
            "extra_metadata": entity.metadata,
            "updated_at": entity.updated_at,
        }

    async def add(self, subscription: Subscription) -> Subscription:
        self.session.add(
            SubscriptionModel(
                id=subscription.id,
                user_id=subscription.user_id,
                plan_id=subscription.plan_id,
                provider=subscription.provider,
                amount=subscription.amount,
                currency=subscription.currency,
                interval=subscription.interval.value,
                interval_count=subscription.interval_count,
                version=subscription.version,
                created_at=subscription.created_at,
                **self._columns(subscription),
            )
        )
        await self.session.flush()
        return subscription

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        result = await self.session.execute(select(SubscriptionModel).where(SubscriptionModel.id == subscription_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_provider_subscription_id(
        self, provider: str, provider_subscription_id: str
    ) -> Optional[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel).where(
                SubscriptionModel.provider == provider,
                SubscriptionModel.provider_subscription_id == provider_subscription_id,
            )
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def save(self, subscription: Subscription, expected_version: int) -> Subscription:
        new_version = expected_version + 1
        result = await self.session.execute(
            update(SubscriptionModel)
            .where(SubscriptionModel.id == subscription.id, SubscriptionModel.version == expected_version)
            .values(version=new_version, **self._columns(subscription))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "subscription_version_conflict",
                subscription_id=subscription.id,
                expected_version=expected_version,
            )
            raise ConcurrencyConflictException("subscription", subscription.id, expected_version)
        subscription.version = new_version
        return subscription

    async def _list(self, *criteria, order_by, limit: int) -> List[Subscription]:
        result = await self.session.execute(select(SubscriptionModel).where(*criteria).order_by(order_by).limit(limit))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_due_for_period_end(self, now: datetime, limit: int = 100) -> List[Subscription]:
        return await self._list(
            SubscriptionModel.cancel_at_period_end.is_(True),
            SubscriptionModel.current_period_end <= now,
            SubscriptionModel.status.in_(
                [SubscriptionStatus.TRIALING.value, SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value]
            ),
            order_by=SubscriptionModel.current_period_end.asc(),
            limit=limit,
        )

    async def list_incomplete_created_before(self, cutoff: datetime, limit: int = 100) -> List[Subscription]:
        return await self._list(
            SubscriptionModel.status == SubscriptionStatus.INCOMPLETE.value,
            SubscriptionModel.created_at < cutoff,
            order_by=SubscriptionModel.created_at.asc(),
            limit=limit,
        )

    async def list_trials_ended(self, now: datetime, limit: int = 100) -> List[Subscription]:
        return await self._list(
            SubscriptionModel.status == SubscriptionStatus.TRIALING.value,
            SubscriptionModel.trial_end <= now,
            SubscriptionModel.cancel_at_period_end.is_(False),
            order_by=SubscriptionModel.trial_end.asc(),
            limit=limit,
        )
