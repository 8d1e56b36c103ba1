"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .entity import Payment, PaymentStatus


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def add(self, payment: Payment) -> Payment:
        """新增支付记录（version 从 0 开始）"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_by_provider_payment_id(self, provider: str, provider_payment_id: str) -> Optional[Payment]:
        """根据渠道支付ID获取支付"""
        pass

    @abstractmethod
    async def save(self, payment: Payment, expected_version: int) -> Payment:
        """
        按版本号条件更新

        版本不匹配时抛出 ConcurrencyConflictException，成功后 version + 1
        """
        pass

    @abstractmethod
    async def list_by_status(
        self,
        statuses: Sequence[PaymentStatus],
        *,
        updated_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Payment]:
        """根据状态获取支付列表（对账用）"""
        pass

    @abstractmethod
    async def list_by_subscription(self, subscription_id: str) -> List[Payment]:
        """获取订阅关联的支付"""
        pass
