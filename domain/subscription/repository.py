"""
订阅仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Subscription


class SubscriptionRepository(ABC):

    @abstractmethod
    async def add(self, subscription: Subscription) -> Subscription:
        """新增订阅"""
        pass

    @abstractmethod
    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        """根据ID获取订阅"""
        pass

    @abstractmethod
    async def get_by_provider_subscription_id(
        self, provider: str, provider_subscription_id: str
    ) -> Optional[Subscription]:
        """根据渠道订阅ID获取订阅"""
        pass

    @abstractmethod
    async def save(self, subscription: Subscription, expected_version: int) -> Subscription:
        """按版本号条件更新，冲突时抛出 ConcurrencyConflictException"""
        pass

    @abstractmethod
    async def list_due_for_period_end(self, now: datetime, limit: int = 100) -> List[Subscription]:
        """已到期且标记了期末取消的订阅"""
        pass

    @abstractmethod
    async def list_incomplete_created_before(self, cutoff: datetime, limit: int = 100) -> List[Subscription]:
        """创建时间早于 cutoff 的 INCOMPLETE 订阅"""
        pass

    @abstractmethod
    async def list_trials_ended(self, now: datetime, limit: int = 100) -> List[Subscription]:
        """试用期已结束但仍为 TRIALING 的订阅"""
        pass
