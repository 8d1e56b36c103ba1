"""
Subscription application service.

A subscription without a trial starts INCOMPLETE together with its first
payment in one unit of work; the payment's success activates it (see
``PaymentService._activate_subscription``). Renewals and provider-side
cancellations arrive as webhooks. Period-end cancellation, abandoned
INCOMPLETE subscriptions and finished trials are materialized by scheduled
jobs.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence

from application.dtos.payments import (
    CancelSubscriptionCommand,
    CreateSubscriptionCommand,
    SubscriptionView,
    WebhookNotification,
)
from application.services.concurrency import retry_on_conflict
from application.services.payment_service import PaymentService
from application.services.provider_selector import ProviderSelector
from core.logging_config import get_logger
from core.settings import SubscriptionSettings
from domain.common.exceptions import AggregateNotFoundException, BusinessException
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment
from domain.payment.events import PAYMENT_CREATED, payment_event
from domain.subscription import state_machine as subscription_sm
from domain.subscription.entity import Subscription
from domain.subscription.events import SUBSCRIPTION_CREATED, subscription_event


logger = get_logger(__name__)

UowFactory = Callable[..., AbstractUnitOfWork]
SubscriptionLoader = Callable[[AbstractUnitOfWork], Awaitable[Optional[Subscription]]]
Decide = Callable[[Subscription], Sequence[subscription_sm.SubscriptionTrigger]]


class SubscriptionService:
    def __init__(
        self,
        uow_factory: UowFactory,
        selector: ProviderSelector,
        payments: PaymentService,
        *,
        concurrency_attempts: int = 3,
        settings: Optional[SubscriptionSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._selector = selector
        self._payments = payments
        self._attempts = concurrency_attempts
        self._settings = settings or SubscriptionSettings()

    async def create_subscription(self, cmd: CreateSubscriptionCommand) -> SubscriptionView:
        provider = self._selector.select(currency=cmd.currency, region=cmd.region, preferred=cmd.provider)
        subscription = Subscription.create(
            user_id=cmd.user_id,
            plan_id=cmd.plan_id,
            provider=provider,
            amount=cmd.amount,
            currency=cmd.currency,
            interval=cmd.interval,
            interval_count=cmd.interval_count,
            trial_days=cmd.trial_days,
            metadata=cmd.metadata,
        )
        initial: Optional[Payment] = None
        if cmd.trial_days == 0:
            initial = Payment.create(
                user_id=cmd.user_id,
                amount=cmd.amount,
                currency=cmd.currency,
                provider=provider,
                region=cmd.region,
                subscription_id=subscription.id,
                metadata={"plan_id": cmd.plan_id},
            )

        async with self._uow_factory() as uow:
            await uow.subscriptions.add(subscription)
            events = [subscription_event(SUBSCRIPTION_CREATED, subscription)]
            if initial is not None:
                await uow.payments.add(initial)
                events.append(payment_event(PAYMENT_CREATED, initial))
            await uow.record(events)
        logger.info(
            "subscription_created",
            subscription_id=subscription.id,
            provider=provider,
            status=subscription.status.value,
            initial_payment_id=initial.id if initial else None,
        )

        if initial is None:
            return SubscriptionView.from_entity(subscription)
        try:
            initial = await self._payments.submit(initial)
        except BusinessException as exc:
            exc.aggregate = (await self._view(subscription.id)).model_dump(mode="json")
            raise
        return await self._view(subscription.id, initial)

    async def get_subscription(self, subscription_id: str) -> SubscriptionView:
        return await self._view(subscription_id)

    async def cancel_subscription(self, subscription_id: str, cmd: CancelSubscriptionCommand) -> SubscriptionView:
        trigger = subscription_sm.CancelRequested(at_period_end=cmd.at_period_end, reason=cmd.reason)
        try:
            subscription = await self._transition(subscription_id, self._by_id(subscription_id), lambda s: [trigger])
        except AggregateNotFoundException:
            raise
        except BusinessException as exc:
            exc.aggregate = (await self._view(subscription_id)).model_dump(mode="json")
            raise
        return SubscriptionView.from_entity(subscription)

    async def apply_notification(self, notification: WebhookNotification) -> Subscription:
        """Webhook handler for subscription.* notifications."""

        async def load(uow: AbstractUnitOfWork) -> Optional[Subscription]:
            if notification.subscription_id:
                found = await uow.subscriptions.get_by_id(notification.subscription_id)
                if found is not None:
                    return found
            if notification.provider_subscription_id:
                return await uow.subscriptions.get_by_provider_subscription_id(
                    notification.provider, notification.provider_subscription_id
                )
            return None

        def decide(sub: Subscription) -> List[subscription_sm.SubscriptionTrigger]:
            if notification.kind == "subscription.renewed":
                default_start, default_end = sub.next_period()
                return [
                    subscription_sm.RenewalSucceeded(
                        period_start=notification.period_start or default_start,
                        period_end=notification.period_end or default_end,
                        provider_reference=notification.provider_payment_id or notification.event_id,
                        provider_subscription_id=notification.provider_subscription_id,
                    )
                ]
            if notification.kind == "subscription.payment_failed":
                return [
                    subscription_sm.RenewalFailed(
                        reason=notification.error_message,
                        max_failures=self._settings.max_renewal_failures,
                    )
                ]
            if notification.kind == "subscription.cancelled":
                return [subscription_sm.CancelRequested(at_period_end=False, reason="cancelled by provider")]
            return []

        identifier = notification.subscription_id or notification.provider_subscription_id or notification.event_id
        return await self._transition(identifier, load, decide)

    # ---- scheduled jobs ----

    async def materialize_period_end(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        async with self._uow_factory(readonly=True) as uow:
            due = await uow.subscriptions.list_due_for_period_end(now)
        return await self._sweep(due, lambda s: [subscription_sm.PeriodEnded(at=now)], "period_end")

    async def expire_incomplete(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        cutoff = now - timedelta(hours=self._settings.incomplete_expiry_hours)
        async with self._uow_factory(readonly=True) as uow:
            abandoned = await uow.subscriptions.list_incomplete_created_before(cutoff)
        return await self._sweep(abandoned, lambda s: [subscription_sm.IncompleteExpired()], "incomplete_expiry")

    async def end_trials(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        async with self._uow_factory(readonly=True) as uow:
            ended = await uow.subscriptions.list_trials_ended(now)
        return await self._sweep(ended, lambda s: [subscription_sm.TrialEnded()], "trial_end")

    async def _sweep(self, subscriptions: Sequence[Subscription], decide: Decide, job: str) -> int:
        done = 0
        for sub in subscriptions:
            try:
                await self._transition(sub.id, self._by_id(sub.id), decide)
            except BusinessException as exc:
                logger.warning("subscription_job_failed", job=job, subscription_id=sub.id, error=exc.message)
                continue
            done += 1
        if done:
            logger.info("subscription_job_completed", job=job, count=done)
        return done

    # ---- internals ----

    def _by_id(self, subscription_id: str) -> SubscriptionLoader:
        async def load(uow: AbstractUnitOfWork) -> Optional[Subscription]:
            return await uow.subscriptions.get_by_id(subscription_id)

        return load

    async def _transition(self, identifier: str, load: SubscriptionLoader, decide: Decide) -> Subscription:
        async def attempt() -> Subscription:
            now = utcnow()
            async with self._uow_factory() as uow:
                current = await load(uow)
                if current is None:
                    raise AggregateNotFoundException("subscription", identifier)
                aggregate, events, transactions = current, [], []
                for trigger in decide(current):
                    step = subscription_sm.apply(aggregate, trigger, now=now)
                    if step.changed:
                        aggregate = step.aggregate
                        events.extend(step.events)
                        transactions.extend(step.transactions)
                if aggregate is current:
                    return current
                saved = await uow.subscriptions.save(aggregate, expected_version=current.version)
                await uow.record(events, transactions)
            logger.info(
                "subscription_transition_applied",
                subscription_id=saved.id,
                from_status=current.status.value,
                to_status=saved.status.value,
                events=[e.event_type for e in events],
                version=saved.version,
            )
            return saved

        return await retry_on_conflict(
            attempt, attempts=self._attempts, aggregate_type="subscription", aggregate_id=identifier
        )

    async def _view(self, subscription_id: str, initial: Optional[Payment] = None) -> SubscriptionView:
        async with self._uow_factory(readonly=True) as uow:
            subscription = await uow.subscriptions.get_by_id(subscription_id)
            if subscription is not None and initial is None:
                linked = await uow.payments.list_by_subscription(subscription_id)
                initial = linked[0] if linked else None
        if subscription is None:
            raise AggregateNotFoundException("subscription", subscription_id)
        return SubscriptionView.from_entity(subscription, initial)
