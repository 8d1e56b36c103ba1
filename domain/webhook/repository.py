"""
Webhook 事件仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import WebhookEvent, WebhookStatus


class WebhookEventRepository(ABC):

    @abstractmethod
    async def add(self, event: WebhookEvent) -> WebhookEvent:
        """
        插入事件

        (provider, provider_event_id) 已存在时抛出 DuplicateWebhookEvent
        """
        pass

    @abstractmethod
    async def get_by_id(self, event_id: str) -> Optional[WebhookEvent]:
        pass

    @abstractmethod
    async def get_by_provider_event_id(self, provider: str, provider_event_id: str) -> Optional[WebhookEvent]:
        pass

    @abstractmethod
    async def update(
        self, event: WebhookEvent, *, expected_status: WebhookStatus, expected_retry_count: int
    ) -> bool:
        """
        条件更新处理结果

        仅当库中 status / retry_count 仍为读取时的值才写入；返回是否写入成功
        """
        pass

    @abstractmethod
    async def list_retryable(self, received_before: datetime, limit: int = 100) -> List[WebhookEvent]:
        """获取 received_before 之前接收的 PENDING / FAILED 事件，按接收时间排序"""
        pass


class DuplicateWebhookEvent(Exception):
    """同一渠道事件已存在"""

    def __init__(self, provider: str, provider_event_id: str):
        super().__init__(f"{provider}:{provider_event_id}")
        self.provider = provider
        self.provider_event_id = provider_event_id
