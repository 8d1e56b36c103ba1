"""
Outbox relay: drains committed events to the message bus.

Rows are claimed with a short lease so several relays can run side by side.
An entry is marked published only after the publisher acknowledged it. When a
publish fails, later entries of the same aggregate in the batch are released
unpublished so per-aggregate order survives the retry.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Set, Tuple

from application.ports.event_publisher import EventPublisher
from core.logging_config import get_logger
from core.settings import OutboxSettings
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.outbox.entity import OutboxEntry


logger = get_logger(__name__)

UowFactory = Callable[..., AbstractUnitOfWork]


@dataclass(frozen=True)
class RelayReport:
    published: int = 0
    failed: int = 0
    deferred: int = 0


class OutboxRelay:
    def __init__(
        self,
        uow_factory: UowFactory,
        publisher: EventPublisher,
        *,
        topic_prefix: str = "paysync",
        settings: Optional[OutboxSettings] = None,
        worker_id: Optional[str] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._publisher = publisher
        self._topic_prefix = topic_prefix
        self._settings = settings or OutboxSettings()
        self._worker_id = worker_id or f"relay-{uuid.uuid4().hex[:8]}"

    def topic_for(self, entry: OutboxEntry) -> str:
        return f"{self._topic_prefix}.{entry.aggregate_type}"

    async def drain_once(self) -> RelayReport:
        now = utcnow()
        async with self._uow_factory() as uow:
            batch = await uow.outbox.claim_batch(
                self._worker_id,
                now,
                now + timedelta(seconds=self._settings.lease_seconds),
                self._settings.batch_size,
            )
        if not batch:
            return RelayReport()

        blocked: Set[Tuple[str, str]] = set()
        deferred: List[int] = []
        published = failed = 0
        for entry in batch:
            aggregate = (entry.aggregate_type, entry.aggregate_id)
            if aggregate in blocked:
                deferred.append(entry.id)
                continue
            try:
                await self._publisher.publish(self.topic_for(entry), entry.aggregate_id, entry.envelope())
            except Exception as exc:
                blocked.add(aggregate)
                failed += 1
                logger.warning(
                    "outbox_publish_failed",
                    event_id=entry.event_id,
                    event_type=entry.event_type,
                    aggregate_id=entry.aggregate_id,
                    attempts=entry.attempts + 1,
                    error=str(exc),
                )
                async with self._uow_factory() as uow:
                    await uow.outbox.mark_failed(entry.id, self._worker_id, str(exc))
                continue
            async with self._uow_factory() as uow:
                await uow.outbox.mark_published(entry.id, self._worker_id, utcnow())
            published += 1

        if deferred:
            async with self._uow_factory() as uow:
                await uow.outbox.release(deferred, self._worker_id)
        report = RelayReport(published=published, failed=failed, deferred=len(deferred))
        logger.info(
            "outbox_drained",
            worker_id=self._worker_id,
            published=report.published,
            failed=report.failed,
            deferred=report.deferred,
        )
        return report

    async def drain(self, max_batches: int = 10) -> int:
        """Drain until empty, a failure, or ``max_batches`` batches."""
        total = 0
        for _ in range(max_batches):
            report = await self.drain_once()
            total += report.published
            if report.failed or report.published == 0:
                break
        return total
