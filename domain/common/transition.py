"""状态机转换结果"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, List, TypeVar

from domain.common.events import DomainEvent

A = TypeVar("A")


@dataclass
class TransitionResult(Generic[A]):
    """
    纯函数转换的输出：新聚合 + 事件 + 流水 + 外部指令

    changed=False 表示状态回声（重复通知），调用方不应持久化任何内容。
    """

    aggregate: A
    events: List[DomainEvent] = field(default_factory=list)
    transactions: List[Any] = field(default_factory=list)
    instructions: List[Any] = field(default_factory=list)
    changed: bool = True

    @classmethod
    def unchanged(cls, aggregate: A) -> "TransitionResult[A]":
        return cls(aggregate=aggregate, changed=False)
