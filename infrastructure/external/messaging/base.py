"""Transport-neutral message types shared by the outbox publishers."""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


Headers = Dict[str, bytes]


@dataclass(slots=True)
class Envelope:
    """One outbox message on its way to the bus.

    ``key`` is the aggregate id; brokers partition on it so events of one
    aggregate keep their order.
    """

    payload: Any
    key: Optional[bytes] = None
    headers: Headers = field(default_factory=dict)

    @property
    def key_text(self) -> str:
        return (self.key or b"").decode("utf-8", errors="replace")

    def header(self, name: str) -> Optional[str]:
        raw = self.headers.get(name)
        return raw.decode("utf-8", errors="replace") if raw is not None else None


@dataclass(frozen=True, slots=True)
class PublishResult:
    topic: str
    partition: int
    offset: int


class Serializer(Protocol):
    def dumps(self, obj: Any) -> bytes: ...

    def loads(self, data: bytes) -> Any: ...


class PublishMiddleware(Protocol):
    def before_publish(self, topic: str, env: Envelope) -> Envelope: ...

    def after_publish(self, topic: str, env: Envelope, result: PublishResult) -> None: ...


class Publisher(abc.ABC):
    """Blocking publisher.

    ``publish`` returns only after the broker acknowledged the message and
    raises :class:`PublishError` otherwise; the relay relies on that to decide
    whether an outbox row may be marked published.
    """

    @abc.abstractmethod
    def publish(self, topic: str, env: Envelope) -> PublishResult: ...

    @abc.abstractmethod
    def close(self) -> None: ...

    def __enter__(self) -> "Publisher":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
