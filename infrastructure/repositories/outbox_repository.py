"""
Outbox 仓储实现

认领规则：按 id 顺序扫描未投递事件；某聚合只要有一条事件被其他 worker
持有租约或认领失败，该聚合之后的事件本轮都不认领，保证同一聚合按顺序投递。
"""
from datetime import datetime
from typing import List, Set, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.outbox.entity import OutboxEntry
from domain.outbox.repository import OutboxRepository
from infrastructure.models.outbox import OutboxModel


class SQLAlchemyOutboxRepository(OutboxRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OutboxModel) -> OutboxEntry:
        return OutboxEntry(
            id=model.id,
            event_id=model.event_id,
            event_type=model.event_type,
            aggregate_type=model.aggregate_type,
            aggregate_id=model.aggregate_id,
            payload=model.payload or {},
            occurred_at=model.occurred_at,
            published_at=model.published_at,
            attempts=model.attempts,
            last_error=model.last_error,
            claimed_by=model.claimed_by,
            claimed_until=model.claimed_until,
        )

    async def add(self, entry: OutboxEntry) -> OutboxEntry:
        model = OutboxModel(
            event_id=entry.event_id,
            event_type=entry.event_type,
            aggregate_type=entry.aggregate_type,
            aggregate_id=entry.aggregate_id,
            payload=entry.payload,
            occurred_at=entry.occurred_at,
            attempts=0,
        )
        self.session.add(model)
        await self.session.flush()
        entry.id = model.id
        return entry

    async def claim_batch(self, worker_id: str, now: datetime, lease_until: datetime, limit: int) -> List[OutboxEntry]:
        result = await self.session.execute(
            select(OutboxModel).where(OutboxModel.published_at.is_(None)).order_by(OutboxModel.id.asc()).limit(limit)
        )
        candidates = [self._to_entity(m) for m in result.scalars().all()]

        blocked: Set[Tuple[str, str]] = set()
        claimed: List[OutboxEntry] = []
        for entry in candidates:
            aggregate = (entry.aggregate_type, entry.aggregate_id)
            if aggregate in blocked:
                continue
            updated = await self.session.execute(
                update(OutboxModel)
                .where(
                    OutboxModel.id == entry.id,
                    OutboxModel.published_at.is_(None),
                    or_(
                        OutboxModel.claimed_until.is_(None),
                        OutboxModel.claimed_until <= now,
                        OutboxModel.claimed_by == worker_id,
                    ),
                )
                .values(claimed_by=worker_id, claimed_until=lease_until)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                blocked.add(aggregate)
                continue
            entry.claimed_by = worker_id
            entry.claimed_until = lease_until
            claimed.append(entry)
        return claimed

    def _owned(self, entry_id: int, worker_id: str):
        return and_(OutboxModel.id == entry_id, OutboxModel.claimed_by == worker_id)

    async def mark_published(self, entry_id: int, worker_id: str, published_at: datetime) -> None:
        await self.session.execute(
            update(OutboxModel)
            .where(self._owned(entry_id, worker_id))
            .values(published_at=published_at, claimed_by=None, claimed_until=None)
            .execution_options(synchronize_session=False)
        )

    async def mark_failed(self, entry_id: int, worker_id: str, error: str) -> None:
        await self.session.execute(
            update(OutboxModel)
            .where(self._owned(entry_id, worker_id))
            .values(
                attempts=OutboxModel.attempts + 1,
                last_error=error[:1000],
                claimed_by=None,
                claimed_until=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def release(self, entry_ids: List[int], worker_id: str) -> None:
        if not entry_ids:
            return
        await self.session.execute(
            update(OutboxModel)
            .where(OutboxModel.id.in_(entry_ids), OutboxModel.claimed_by == worker_id)
            .values(claimed_by=None, claimed_until=None)
            .execution_options(synchronize_session=False)
        )

    async def list_unpublished(self, limit: int = 100) -> List[OutboxEntry]:
        result = await self.session.execute(
            select(OutboxModel).where(OutboxModel.published_at.is_(None)).order_by(OutboxModel.id.asc()).limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
