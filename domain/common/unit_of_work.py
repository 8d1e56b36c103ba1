"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from domain.common.events import DomainEvent
from domain.idempotency.repository import IdempotencyRepository
from domain.outbox.entity import OutboxEntry
from domain.outbox.repository import OutboxRepository
from domain.payment.repository import PaymentRepository
from domain.subscription.repository import SubscriptionRepository
from domain.transaction.entity import Transaction
from domain.transaction.repository import TransactionRepository
from domain.webhook.repository import WebhookEventRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象：聚合、流水与 outbox 在同一事务内提交"""

    payments: PaymentRepository
    subscriptions: SubscriptionRepository
    transactions: TransactionRepository
    webhook_events: WebhookEventRepository
    idempotency: IdempotencyRepository
    outbox: OutboxRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    async def record(self, events: Iterable[DomainEvent], transactions: Iterable[Transaction] = ()) -> None:
        """把转换产生的流水与事件写入当前事务"""
        for txn in transactions:
            await self.transactions.add(txn)
        for event in events:
            await self.outbox.add(OutboxEntry.from_event(event))

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
