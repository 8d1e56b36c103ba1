"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.repositories.idempotency_repository import SQLAlchemyIdempotencyRepository
from infrastructure.repositories.outbox_repository import SQLAlchemyOutboxRepository
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentRepository
from infrastructure.repositories.subscription_repository import SQLAlchemySubscriptionRepository
from infrastructure.repositories.transaction_repository import SQLAlchemyTransactionRepository
from infrastructure.repositories.webhook_event_repository import SQLAlchemyWebhookEventRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work：一个实例对应一个会话、一个事务"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.payments = SQLAlchemyPaymentRepository(self.session)
        self.subscriptions = SQLAlchemySubscriptionRepository(self.session)
        self.transactions = SQLAlchemyTransactionRepository(self.session)
        self.webhook_events = SQLAlchemyWebhookEventRepository(self.session)
        self.idempotency = SQLAlchemyIdempotencyRepository(self.session)
        self.outbox = SQLAlchemyOutboxRepository(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly and not self.session.in_transaction():
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def unit_of_work_factory(session_factory: Callable[[], AsyncSession]) -> Callable[..., SQLAlchemyUnitOfWork]:
    """供应用服务使用的工厂：uow_factory() / uow_factory(readonly=True)"""

    def factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return factory
