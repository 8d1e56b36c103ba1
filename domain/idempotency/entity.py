"""
幂等记录实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from domain.common.timeutils import ensure_utc, utcnow

DEFAULT_TTL = timedelta(hours=24)


@dataclass
class IdempotencyRecord:
    """
    幂等记录

    业务规则：
    1. key 全局唯一（唯一约束插入即为抢占）
    2. response_status 为空表示首个请求仍在处理中
    3. 过期后视为不存在
    """

    key: str
    method: str
    path: str
    fingerprint: str
    expires_at: datetime
    user_id: Optional[str] = None
    response_status: Optional[int] = None
    response_body: Optional[Any] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        self.expires_at = ensure_utc(self.expires_at)
        self.created_at = ensure_utc(self.created_at) or utcnow()
        self.completed_at = ensure_utc(self.completed_at)

    @classmethod
    def reserve(
        cls,
        *,
        key: str,
        method: str,
        path: str,
        fingerprint: str,
        user_id: Optional[str] = None,
        ttl: timedelta = DEFAULT_TTL,
        now: Optional[datetime] = None,
    ) -> "IdempotencyRecord":
        now = now or utcnow()
        return cls(
            key=key,
            method=method.upper(),
            path=path,
            fingerprint=fingerprint,
            user_id=user_id,
            expires_at=now + ttl,
            created_at=now,
        )

    @property
    def completed(self) -> bool:
        return self.response_status is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def matches(self, fingerprint: str, user_id: Optional[str]) -> bool:
        if self.fingerprint != fingerprint:
            return False
        return self.user_id is None or user_id is None or self.user_id == user_id
