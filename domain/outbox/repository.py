"""
Outbox 仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from .entity import OutboxEntry


class OutboxRepository(ABC):

    @abstractmethod
    async def add(self, entry: OutboxEntry) -> OutboxEntry:
        """写入待投递事件（与聚合变更同一事务）"""
        pass

    @abstractmethod
    async def claim_batch(self, worker_id: str, now: datetime, lease_until: datetime, limit: int) -> List[OutboxEntry]:
        """
        认领一批未投递事件

        跳过仍被其他 worker 租约占用的行；返回结果按 id 升序
        """
        pass

    @abstractmethod
    async def mark_published(self, entry_id: int, worker_id: str, published_at: datetime) -> None:
        """标记投递成功并释放租约"""
        pass

    @abstractmethod
    async def mark_failed(self, entry_id: int, worker_id: str, error: str) -> None:
        """记录投递失败（attempts + 1）并释放租约，保持未投递"""
        pass

    @abstractmethod
    async def release(self, entry_ids: List[int], worker_id: str) -> None:
        """释放未尝试投递的租约"""
        pass

    @abstractmethod
    async def list_unpublished(self, limit: int = 100) -> List[OutboxEntry]:
        pass
