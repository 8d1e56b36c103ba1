"""
幂等记录仓储实现
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.idempotency.entity import IdempotencyRecord
from domain.idempotency.repository import IdempotencyKeyTaken, IdempotencyRepository
from infrastructure.models.idempotency import IdempotencyRecordModel


class SQLAlchemyIdempotencyRepository(IdempotencyRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: IdempotencyRecordModel) -> IdempotencyRecord:
        return IdempotencyRecord(
            key=model.key,
            method=model.method,
            path=model.path,
            fingerprint=model.fingerprint,
            user_id=model.user_id,
            response_status=model.response_status,
            response_body=model.response_body,
            created_at=model.created_at,
            completed_at=model.completed_at,
            expires_at=model.expires_at,
        )

    async def insert(self, record: IdempotencyRecord) -> IdempotencyRecord:
        self.session.add(
            IdempotencyRecordModel(
                key=record.key,
                method=record.method,
                path=record.path,
                fingerprint=record.fingerprint,
                user_id=record.user_id,
                created_at=record.created_at,
                expires_at=record.expires_at,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError:
            raise IdempotencyKeyTaken(record.key)
        return record

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        result = await self.session.execute(select(IdempotencyRecordModel).where(IdempotencyRecordModel.key == key))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def complete(self, key: str, status: int, body: Any, completed_at: datetime) -> None:
        await self.session.execute(
            update(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.key == key)
            .values(response_status=status, response_body=body, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )

    async def delete(self, key: str) -> None:
        await self.session.execute(
            delete(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.key == key)
            .execution_options(synchronize_session=False)
        )

    async def delete_if_expired(self, key: str, now: datetime) -> bool:
        result = await self.session.execute(
            delete(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.key == key, IdempotencyRecordModel.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
