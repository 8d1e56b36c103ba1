"""
交易流水仓储接口 - 只追加，不更新，不删除
"""
from abc import ABC, abstractmethod
from typing import List

from .entity import Transaction


class TransactionRepository(ABC):

    @abstractmethod
    async def add(self, transaction: Transaction) -> Transaction:
        """追加一条流水"""
        pass

    @abstractmethod
    async def list_by_payment(self, payment_id: str) -> List[Transaction]:
        """按创建顺序获取支付的流水"""
        pass

    @abstractmethod
    async def list_by_subscription(self, subscription_id: str) -> List[Transaction]:
        """按创建顺序获取订阅的流水"""
        pass
