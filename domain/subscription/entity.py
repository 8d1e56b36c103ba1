"""
订阅领域实体 - 订阅聚合根
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
import uuid

from domain.common.exceptions import DomainValidationException
from domain.common.money import Money, normalize_currency
from domain.common.timeutils import ensure_utc, utcnow
from domain.payment.entity import validate_metadata


class SubscriptionStatus(str, Enum):
    """订阅状态枚举"""
    INCOMPLETE = "incomplete"  # 首笔支付尚未成功
    TRIALING = "trialing"      # 试用期
    ACTIVE = "active"          # 生效中
    PAST_DUE = "past_due"      # 续费失败，等待恢复
    CANCELLED = "cancelled"    # 已取消
    EXPIRED = "expired"        # 已过期（续费重试耗尽或首付超时）


LIVE_STATUSES = frozenset({SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE})


class BillingInterval(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def advance_period(start: datetime, interval: BillingInterval, count: int = 1) -> datetime:
    """计算计费周期结束时间（月末对齐到目标月最后一天）"""
    if interval == BillingInterval.DAY:
        return start + timedelta(days=count)
    if interval == BillingInterval.WEEK:
        return start + timedelta(weeks=count)
    if interval == BillingInterval.MONTH:
        return _add_months(start, count)
    return _add_months(start, 12 * count)


def new_subscription_id() -> str:
    return f"sub_{uuid.uuid4().hex}"


@dataclass
class Subscription:
    """
    订阅聚合根

    业务规则：
    1. current_period_end 必须晚于 current_period_start
    2. cancelled_at 只在进入 CANCELLED 或 EXPIRED 时设置
    3. (provider, provider_subscription_id) 组合唯一
    4. 状态只能经由状态机转换（domain.subscription.state_machine）
    """

    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    provider: str
    interval: BillingInterval
    amount: Decimal
    currency: str
    current_period_start: datetime
    current_period_end: datetime
    interval_count: int = 1
    provider_subscription_id: Optional[str] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    failed_renewals: int = 0
    metadata: dict = field(default_factory=dict)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.currency = normalize_currency(self.currency)
        self.amount = Money(Decimal(str(self.amount)), self.currency).amount
        if self.amount <= 0:
            raise DomainValidationException(f"Billing amount must be greater than 0: {self.amount}", field="amount")
        if not self.user_id:
            raise DomainValidationException("user_id is required", field="user_id")
        if not self.plan_id:
            raise DomainValidationException("plan_id is required", field="plan_id")
        if self.interval_count < 1:
            raise DomainValidationException("interval_count must be at least 1", field="interval_count")
        self.metadata = validate_metadata(self.metadata)
        self.current_period_start = ensure_utc(self.current_period_start)
        self.current_period_end = ensure_utc(self.current_period_end)
        self.trial_start = ensure_utc(self.trial_start)
        self.trial_end = ensure_utc(self.trial_end)
        self.cancelled_at = ensure_utc(self.cancelled_at)
        self.ended_at = ensure_utc(self.ended_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        check_period(self.current_period_start, self.current_period_end)

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        plan_id: str,
        provider: str,
        amount: Decimal,
        currency: str,
        interval: BillingInterval,
        interval_count: int = 1,
        trial_days: int = 0,
        metadata: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> "Subscription":
        """有试用期则从 TRIALING 开始，否则从 INCOMPLETE 开始等待首笔支付"""
        now = now or utcnow()
        if trial_days > 0:
            trial_end = now + timedelta(days=trial_days)
            status = SubscriptionStatus.TRIALING
            period_start, period_end = now, trial_end
            trial_start = now
        else:
            trial_end = trial_start = None
            status = SubscriptionStatus.INCOMPLETE
            period_start = now
            period_end = advance_period(now, interval, interval_count)
        return cls(
            id=new_subscription_id(),
            user_id=user_id,
            plan_id=plan_id,
            status=status,
            provider=provider,
            interval=interval,
            interval_count=interval_count,
            amount=amount,
            currency=currency,
            current_period_start=period_start,
            current_period_end=period_end,
            trial_start=trial_start,
            trial_end=trial_end,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )

    @property
    def billing(self) -> Money:
        return Money(self.amount, self.currency)

    def next_period(self) -> Tuple[datetime, datetime]:
        start = self.current_period_end
        return start, advance_period(start, self.interval, self.interval_count)

    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


def check_period(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is None or end is None or end <= start:
        raise DomainValidationException(
            "current_period_end must be after current_period_start",
            field="current_period_end",
        )
