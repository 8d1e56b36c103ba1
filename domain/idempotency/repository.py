"""
幂等记录仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from .entity import IdempotencyRecord


class IdempotencyRepository(ABC):

    @abstractmethod
    async def insert(self, record: IdempotencyRecord) -> IdempotencyRecord:
        """唯一约束插入；key 已存在时抛出 IdempotencyKeyTaken"""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        pass

    @abstractmethod
    async def complete(self, key: str, status: int, body: Any, completed_at: datetime) -> None:
        """写入首个请求的响应"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """删除记录（首个请求未产生结果时释放）"""
        pass

    @abstractmethod
    async def delete_if_expired(self, key: str, now: datetime) -> bool:
        """仅当记录已过期时删除，避免误删并发请求刚插入的新记录"""
        pass

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        """清理过期记录，返回删除条数"""
        pass


class IdempotencyKeyTaken(Exception):
    """幂等键已被占用（唯一约束冲突）"""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key
