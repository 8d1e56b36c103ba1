"""
交易流水仓储实现（只追加）
"""
from decimal import Decimal
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.transaction.entity import Transaction, TransactionKind
from domain.transaction.repository import TransactionRepository
from infrastructure.models.transaction import TransactionModel


class SQLAlchemyTransactionRepository(TransactionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            kind=TransactionKind(model.kind),
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            payment_id=model.payment_id,
            subscription_id=model.subscription_id,
            provider=model.provider,
            provider_reference=model.provider_reference,
            description=model.description,
            created_at=model.created_at,
        )

    async def add(self, transaction: Transaction) -> Transaction:
        self.session.add(
            TransactionModel(
                id=transaction.id,
                kind=transaction.kind.value,
                amount=transaction.amount,
                currency=transaction.currency,
                payment_id=transaction.payment_id,
                subscription_id=transaction.subscription_id,
                provider=transaction.provider,
                provider_reference=transaction.provider_reference,
                description=transaction.description,
                created_at=transaction.created_at,
            )
        )
        await self.session.flush()
        return transaction

    async def list_by_payment(self, payment_id: str) -> List[Transaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.payment_id == payment_id)
            .order_by(TransactionModel.created_at.asc(), TransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_subscription(self, subscription_id: str) -> List[Transaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.subscription_id == subscription_id)
            .order_by(TransactionModel.created_at.asc(), TransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]
