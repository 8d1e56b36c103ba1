"""
Payment application service orchestrating gateways, state machine and storage.

Every mutation follows the same path: load the aggregate, run the pure state
machine, persist with a version check and stage the resulting transactions and
outbox events in the same unit of work. Provider I/O happens outside the
transaction and its result is fed back as a trigger.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from application.dtos.payments import (
    CancelPaymentCommand,
    CreatePaymentCommand,
    PaymentView,
    ProviderPaymentRequest,
    ProviderPaymentResult,
    ProviderRefundRequest,
    RefundPaymentCommand,
    TransactionView,
    WebhookNotification,
)
from application.ports.payment_gateway import PaymentGateway, resolve_gateway
from application.services.concurrency import retry_on_conflict
from application.services.provider_calls import ProviderCaller
from application.services.provider_selector import ProviderSelector
from core.logging_config import get_logger
from core.settings import ReconciliationSettings
from domain.common.exceptions import (
    AggregateNotFoundException,
    BusinessException,
    ProviderAmbiguousError,
    ProviderPermanentError,
    ProviderTransientError,
)
from domain.common.timeutils import utcnow
from domain.common.transition import TransitionResult
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment import state_machine as payment_sm
from domain.payment.entity import OPEN_STATUSES, Payment, PaymentStatus, new_refund_id
from domain.payment.events import PAYMENT_CREATED, payment_event
from domain.subscription import state_machine as subscription_sm
from domain.subscription.entity import SubscriptionStatus


logger = get_logger(__name__)

UowFactory = Callable[..., AbstractUnitOfWork]
PaymentLoader = Callable[[AbstractUnitOfWork], Awaitable[Optional[Payment]]]
Decide = Callable[[Payment], Sequence[payment_sm.PaymentTrigger]]


def triggers_for_result(payment: Payment, result: ProviderPaymentResult) -> List[payment_sm.PaymentTrigger]:
    """Translate a provider create/verify result into state machine triggers."""
    ppid = result.provider_payment_id
    secret = result.client_secret
    if result.status == "pending":
        return [payment_sm.ProviderReferenceAssigned(ppid, secret)]
    if result.status in ("processing", "requires_action"):
        return [payment_sm.ProviderAccepted(ppid, result.requires_action, secret)]
    if result.status == "succeeded":
        return _confirm(payment, ppid, secret)
    if result.status == "failed":
        return [payment_sm.ProviderDeclined(result.error_code or "declined", result.error_message)]
    return [payment_sm.CancelRequested(reason="cancelled by provider")]


def triggers_for_notification(payment: Payment, n: WebhookNotification) -> List[payment_sm.PaymentTrigger]:
    """Translate a normalised webhook into state machine triggers."""
    if n.kind == "payment.processing":
        return [payment_sm.ProviderAccepted(n.provider_payment_id, False)]
    if n.kind == "payment.requires_action":
        return [payment_sm.ProviderAccepted(n.provider_payment_id, True)]
    if n.kind == "payment.succeeded":
        return _confirm(payment, n.provider_payment_id, None)
    if n.kind == "payment.failed":
        return [payment_sm.ProviderDeclined(n.error_code or "declined", n.error_message)]
    if n.kind == "payment.cancelled":
        return [payment_sm.CancelRequested(reason="cancelled by provider")]
    entry = payment.find_refund(n.refund_id, n.provider_refund_id)
    if n.kind == "refund.succeeded":
        amount = n.amount if n.amount is not None else (entry.amount if entry else None)
        if amount is None:
            raise ProviderPermanentError("refund notification without amount", provider=n.provider)
        return [
            payment_sm.RefundSucceeded(
                amount=amount,
                refund_id=entry.refund_id if entry else n.refund_id,
                provider_refund_id=n.provider_refund_id,
            )
        ]
    if n.kind == "refund.failed":
        refund_id = entry.refund_id if entry else (n.refund_id or n.provider_refund_id or "")
        return [payment_sm.RefundFailed(refund_id, n.error_message)]
    return []


def _confirm(payment: Payment, ppid: Optional[str], secret: Optional[str]) -> List[payment_sm.PaymentTrigger]:
    # success straight from PENDING: accept then confirm in one unit of work
    triggers: List[payment_sm.PaymentTrigger] = []
    if payment.status == PaymentStatus.PENDING:
        triggers.append(payment_sm.ProviderAccepted(ppid, False, secret))
    triggers.append(payment_sm.ProviderConfirmed(ppid))
    return triggers


def apply_all(
    payment: Payment, triggers: Iterable[payment_sm.PaymentTrigger], now: datetime
) -> TransitionResult[Payment]:
    merged: TransitionResult[Payment] = TransitionResult(aggregate=payment, changed=False)
    for trigger in triggers:
        step = payment_sm.apply(merged.aggregate, trigger, now=now)
        if not step.changed:
            continue
        merged.aggregate = step.aggregate
        merged.events.extend(step.events)
        merged.transactions.extend(step.transactions)
        merged.instructions.extend(step.instructions)
        merged.changed = True
    return merged


class PaymentService:
    def __init__(
        self,
        uow_factory: UowFactory,
        gateways: Mapping[str, PaymentGateway],
        selector: ProviderSelector,
        caller: ProviderCaller,
        *,
        concurrency_attempts: int = 3,
        reconciliation: Optional[ReconciliationSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateways = gateways
        self._selector = selector
        self._caller = caller
        self._attempts = concurrency_attempts
        self._reconciliation = reconciliation or ReconciliationSettings()

    # ---- use cases ----

    async def create_payment(self, cmd: CreatePaymentCommand, *, subscription_id: Optional[str] = None) -> PaymentView:
        provider = self._selector.select(currency=cmd.currency, region=cmd.region, preferred=cmd.provider)
        payment = Payment.create(
            user_id=cmd.user_id,
            amount=cmd.amount,
            currency=cmd.currency,
            provider=provider,
            region=cmd.region,
            subscription_id=subscription_id,
            metadata=cmd.metadata,
        )
        async with self._uow_factory() as uow:
            await uow.payments.add(payment)
            await uow.record([payment_event(PAYMENT_CREATED, payment)])
        logger.info(
            "payment_created",
            payment_id=payment.id,
            provider=provider,
            amount=str(payment.amount),
            currency=payment.currency,
        )
        return PaymentView.from_entity(await self.submit(payment))

    async def submit(self, payment: Payment) -> Payment:
        """Submit a payment and attach its state to any business error."""
        return await self._guard(payment.id, self.start_payment(payment))

    async def start_payment(self, payment: Payment) -> Payment:
        """Submit a persisted PENDING payment to its pinned provider."""
        gateway = resolve_gateway(self._gateways, payment.provider)
        req = ProviderPaymentRequest(
            payment_id=payment.id,
            user_id=payment.user_id,
            amount=payment.amount,
            currency=payment.currency,
            metadata=payment.metadata,
        )
        try:
            result = await self._caller.call(
                payment.provider, "create_payment", lambda: gateway.create_payment(req), mutating=True
            )
        except ProviderAmbiguousError:
            logger.warning("payment_create_outcome_unknown", payment_id=payment.id, provider=payment.provider)
            return await self._reconcile_one(payment.id)
        except (ProviderPermanentError, ProviderTransientError) as exc:
            code = exc.provider_code or ("provider_unavailable" if isinstance(exc, ProviderTransientError) else "provider_error")
            await self._transition_by_id(payment.id, lambda p: [payment_sm.ProviderDeclined(code, exc.message)])
            raise
        return await self._transition_by_id(payment.id, lambda p: triggers_for_result(p, result))

    async def get_payment(self, payment_id: str) -> PaymentView:
        return PaymentView.from_entity(await self._require(payment_id))

    async def list_transactions(self, payment_id: str) -> List[TransactionView]:
        async with self._uow_factory(readonly=True) as uow:
            if await uow.payments.get_by_id(payment_id) is None:
                raise AggregateNotFoundException("payment", payment_id)
            txns = await uow.transactions.list_by_payment(payment_id)
        return [TransactionView.from_entity(t) for t in txns]

    async def verify_payment(self, payment_id: str) -> PaymentView:
        payment = await self._require(payment_id)
        updated = await self._guard(payment_id, self._verify(payment))
        return PaymentView.from_entity(updated)

    async def refund_payment(self, payment_id: str, cmd: RefundPaymentCommand) -> PaymentView:
        refund_id = new_refund_id()

        def decide(p: Payment) -> Sequence[payment_sm.PaymentTrigger]:
            amount = cmd.amount if cmd.amount is not None else p.refundable_amount()
            return [payment_sm.RefundRequested(refund_id=refund_id, amount=amount, reason=cmd.reason)]

        async def run() -> Payment:
            payment, result = await self._transition(payment_id, self._by_id(payment_id), decide)
            for instruction in result.instructions:
                if isinstance(instruction, payment_sm.IssueRefund):
                    payment = await self._issue_refund(instruction)
            return payment

        payment = await self._guard(payment_id, run())
        return PaymentView.from_entity(payment)

    async def cancel_payment(self, payment_id: str, cmd: CancelPaymentCommand) -> PaymentView:
        payment = await self._guard(
            payment_id,
            self._transition_by_id(payment_id, lambda p: [payment_sm.CancelRequested(reason=cmd.reason)]),
        )
        return PaymentView.from_entity(payment)

    async def apply_notification(self, notification: WebhookNotification) -> Payment:
        """Webhook handler for payment.* and refund.* notifications."""

        async def load(uow: AbstractUnitOfWork) -> Optional[Payment]:
            if notification.payment_id:
                found = await uow.payments.get_by_id(notification.payment_id)
                if found is not None:
                    return found
            if notification.provider_payment_id:
                return await uow.payments.get_by_provider_payment_id(
                    notification.provider, notification.provider_payment_id
                )
            return None

        identifier = notification.payment_id or notification.provider_payment_id or notification.event_id
        payment, _ = await self._transition(identifier, load, lambda p: triggers_for_notification(p, notification))
        return payment

    async def reconcile_stale(self, now: Optional[datetime] = None) -> int:
        """Verify open payments that have not moved for a while; time out the hopeless ones."""
        now = now or utcnow()
        cfg = self._reconciliation
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.payments.list_by_status(
                list(OPEN_STATUSES),
                updated_before=now - timedelta(minutes=cfg.stale_after_minutes),
                limit=cfg.batch_size,
            )
        fail_before = now - timedelta(hours=cfg.fail_after_hours)
        reconciled = 0
        for payment in stale:
            try:
                updated = await self._verify(payment)
                if updated.is_open() and updated.created_at is not None and updated.created_at <= fail_before:
                    updated = await self._transition_by_id(payment.id, lambda p: [payment_sm.ProviderTimedOut()])
                    logger.warning("payment_timed_out", payment_id=payment.id, provider=payment.provider)
            except BusinessException as exc:
                logger.warning(
                    "payment_reconcile_failed",
                    payment_id=payment.id,
                    error_type=exc.error_type,
                    error=exc.message,
                )
                continue
            reconciled += 1
        return reconciled

    # ---- internals ----

    async def _verify(self, payment: Payment) -> Payment:
        gateway = resolve_gateway(self._gateways, payment.provider)
        result = await self._caller.call(
            payment.provider,
            "verify_payment",
            lambda: gateway.verify_payment(payment.id, payment.provider_payment_id),
            mutating=False,
        )
        if not result.found:
            logger.info("payment_not_found_at_provider", payment_id=payment.id, provider=payment.provider)
            return payment
        return await self._transition_by_id(payment.id, lambda p: triggers_for_result(p, result))

    async def _reconcile_one(self, payment_id: str) -> Payment:
        payment = await self._require(payment_id)
        try:
            return await self._verify(payment)
        except (ProviderTransientError, ProviderAmbiguousError) as exc:
            # stays open; the reconcile job picks it up later
            logger.warning("payment_reconcile_deferred", payment_id=payment_id, error=exc.message)
            return await self._require(payment_id)

    async def _issue_refund(self, instruction: payment_sm.IssueRefund) -> Payment:
        gateway = resolve_gateway(self._gateways, instruction.provider)
        req = ProviderRefundRequest(
            payment_id=instruction.payment_id,
            refund_id=instruction.refund_id,
            provider_payment_id=instruction.provider_payment_id,
            amount=instruction.amount,
            currency=instruction.currency,
            reason=instruction.reason,
        )
        try:
            outcome = await self._caller.call(
                instruction.provider, "refund", lambda: gateway.refund(req), mutating=True
            )
        except ProviderAmbiguousError:
            # reservation is held until a refund.* webhook settles it
            logger.warning("refund_outcome_unknown", payment_id=instruction.payment_id, refund_id=instruction.refund_id)
            return await self._require(instruction.payment_id)
        except (ProviderPermanentError, ProviderTransientError) as exc:
            await self._transition_by_id(
                instruction.payment_id, lambda p: [payment_sm.RefundFailed(instruction.refund_id, exc.message)]
            )
            raise

        if outcome.status == "failed":
            await self._transition_by_id(
                instruction.payment_id,
                lambda p: [payment_sm.RefundFailed(instruction.refund_id, outcome.error_message)],
            )
            raise ProviderPermanentError(
                outcome.error_message or "Refund was rejected by the provider",
                provider=instruction.provider,
                details={"refund_id": instruction.refund_id},
            )
        if outcome.status == "succeeded":
            trigger: payment_sm.PaymentTrigger = payment_sm.RefundSucceeded(
                amount=instruction.amount,
                refund_id=instruction.refund_id,
                provider_refund_id=outcome.provider_refund_id,
            )
        else:
            trigger = payment_sm.RefundSubmitted(instruction.refund_id, outcome.provider_refund_id)
        return await self._transition_by_id(instruction.payment_id, lambda p: [trigger])

    def _by_id(self, payment_id: str) -> PaymentLoader:
        async def load(uow: AbstractUnitOfWork) -> Optional[Payment]:
            return await uow.payments.get_by_id(payment_id)

        return load

    async def _transition_by_id(self, payment_id: str, decide: Decide) -> Payment:
        payment, _ = await self._transition(payment_id, self._by_id(payment_id), decide)
        return payment

    async def _transition(
        self, identifier: str, load: PaymentLoader, decide: Decide
    ) -> Tuple[Payment, TransitionResult[Payment]]:
        async def attempt() -> Tuple[Payment, TransitionResult[Payment]]:
            now = utcnow()
            async with self._uow_factory() as uow:
                current = await load(uow)
                if current is None:
                    raise AggregateNotFoundException("payment", identifier)
                result = apply_all(current, decide(current), now)
                if not result.changed:
                    return current, result
                saved = await uow.payments.save(result.aggregate, expected_version=current.version)
                await uow.record(result.events, result.transactions)
                await self._activate_subscription(uow, current, saved, now)
            logger.info(
                "payment_transition_applied",
                payment_id=saved.id,
                from_status=current.status.value,
                to_status=saved.status.value,
                events=[e.event_type for e in result.events],
                version=saved.version,
            )
            return saved, result

        return await retry_on_conflict(attempt, attempts=self._attempts, aggregate_type="payment", aggregate_id=identifier)

    async def _activate_subscription(
        self, uow: AbstractUnitOfWork, before: Payment, after: Payment, now: datetime
    ) -> None:
        """Initial payment success activates its INCOMPLETE subscription in the same unit of work."""
        if not after.subscription_id or after.status != PaymentStatus.SUCCEEDED or before.status == PaymentStatus.SUCCEEDED:
            return
        subscription = await uow.subscriptions.get_by_id(after.subscription_id)
        if subscription is None or subscription.status != SubscriptionStatus.INCOMPLETE:
            return
        result = subscription_sm.apply(
            subscription, subscription_sm.ActivationConfirmed(payment_id=after.id), now=now
        )
        await uow.subscriptions.save(result.aggregate, expected_version=subscription.version)
        await uow.record(result.events, result.transactions)
        logger.info("subscription_activated", subscription_id=subscription.id, payment_id=after.id)

    async def _require(self, payment_id: str) -> Payment:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payments.get_by_id(payment_id)
        if payment is None:
            raise AggregateNotFoundException("payment", payment_id)
        return payment

    async def _guard(self, payment_id: str, work: Awaitable[Payment]) -> Payment:
        """Attach the authoritative payment state to business errors."""
        try:
            return await work
        except AggregateNotFoundException:
            raise
        except BusinessException as exc:
            async with self._uow_factory(readonly=True) as uow:
                current = await uow.payments.get_by_id(payment_id)
            if current is not None:
                exc.aggregate = PaymentView.from_entity(current).model_dump(mode="json")
            raise
