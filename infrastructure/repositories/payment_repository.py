"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrencyConflictException, DomainViolationException
from domain.common.money import Money
from domain.payment.entity import Payment, PaymentStatus, RefundEntry
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentModel


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            user_id=model.user_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            provider=model.provider,
            provider_payment_id=model.provider_payment_id,
            client_secret=model.client_secret,
            region=model.region,
            subscription_id=model.subscription_id,
            metadata=model.extra_metadata or {},
            error_code=model.error_code,
            error_message=model.error_message,
            refunded_amount=Money(Decimal(str(model.refunded_amount or 0)), model.currency).amount,
            refunds={r["refund_id"]: RefundEntry.from_dict(r) for r in (model.refunds or [])},
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
            succeeded_at=model.succeeded_at,
            failed_at=model.failed_at,
            cancelled_at=model.cancelled_at,
            refunded_at=model.refunded_at,
        )

    @staticmethod
    def _columns(entity: Payment) -> dict:
        """可变字段（id / user_id / 金额 / 渠道 创建后不变）"""
        return {
            "provider_payment_id": entity.provider_payment_id,
            "client_secret": entity.client_secret,
            "status": entity.status.value,
            "error_code": entity.error_code,
            "error_message": entity.error_message,
            "refunded_amount": entity.refunded_amount,
            "refunds": [r.to_dict() for r in entity.refunds.values()],
            "extra_metadata": entity.metadata,
            "updated_at": entity.updated_at,
            "succeeded_at": entity.succeeded_at,
            "failed_at": entity.failed_at,
            "cancelled_at": entity.cancelled_at,
            "refunded_at": entity.refunded_at,
        }

    async def add(self, payment: Payment) -> Payment:
        """新增支付记录"""
        db_payment = PaymentModel(
            id=payment.id,
            user_id=payment.user_id,
            amount=payment.amount,
            currency=payment.currency,
            provider=payment.provider,
            region=payment.region,
            subscription_id=payment.subscription_id,
            version=payment.version,
            created_at=payment.created_at,
            **self._columns(payment),
        )
        self.session.add(db_payment)
        await self.session.flush()
        return payment

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """根据ID获取支付"""
        result = await self.session.execute(select(PaymentModel).where(PaymentModel.id == payment_id))
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_provider_payment_id(self, provider: str, provider_payment_id: str) -> Optional[Payment]:
        """根据渠道支付ID获取支付"""
        result = await self.session.execute(
            select(PaymentModel).where(
                PaymentModel.provider == provider,
                PaymentModel.provider_payment_id == provider_payment_id,
            )
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def save(self, payment: Payment, expected_version: int) -> Payment:
        """按版本号条件更新；0 行受影响即为并发冲突"""
        new_version = expected_version + 1
        try:
            result = await self.session.execute(
                update(PaymentModel)
                .where(PaymentModel.id == payment.id, PaymentModel.version == expected_version)
                .values(version=new_version, **self._columns(payment))
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            # (provider, provider_payment_id) 已被其他支付占用
            raise DomainViolationException(
                f"Provider payment id {payment.provider_payment_id} is already linked to another payment",
                aggregate_type="payment",
                current_state=payment.status.value,
                trigger="provider_reference",
                details={"payment_id": payment.id},
            )
        if result.rowcount != 1:
            logger.info("payment_version_conflict", payment_id=payment.id, expected_version=expected_version)
            raise ConcurrencyConflictException("payment", payment.id, expected_version)
        payment.version = new_version
        return payment

    async def list_by_status(
        self,
        statuses: Iterable[PaymentStatus],
        *,
        updated_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Payment]:
        """根据状态获取支付列表（按更新时间升序）"""
        query = select(PaymentModel).where(PaymentModel.status.in_([s.value for s in statuses]))
        if updated_before is not None:
            query = query.where(PaymentModel.updated_at < updated_before)
        query = query.order_by(PaymentModel.updated_at.asc()).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_by_subscription(self, subscription_id: str) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.subscription_id == subscription_id)
            .order_by(PaymentModel.created_at.asc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]
