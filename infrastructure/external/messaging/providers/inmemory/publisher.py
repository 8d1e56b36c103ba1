from __future__ import annotations

import threading
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from ...base import Envelope, PublishMiddleware, PublishResult, Publisher, Serializer
from ...exceptions import PublisherClosed


class InMemoryPublisher(Publisher):
    """Process-local broker used in development and tests.

    Messages are serialized like the Kafka publisher does, so a payload that
    would fail on the wire fails here too. Offsets increase per topic.
    """

    def __init__(
        self,
        serializer: Serializer,
        middlewares: Optional[List[PublishMiddleware]] = None,
    ) -> None:
        self.serializer = serializer
        self.middlewares = middlewares or []
        self.messages: Dict[str, List[Tuple[Optional[bytes], bytes, dict]]] = defaultdict(list)
        self._lock = threading.Lock()
        self._closed = False

    def publish(self, topic: str, env: Envelope) -> PublishResult:
        if self._closed:
            raise PublisherClosed("publisher is closed")
        for m in self.middlewares:
            env = m.before_publish(topic, env)
        value = env.payload if isinstance(env.payload, (bytes, bytearray)) else self.serializer.dumps(env.payload)
        with self._lock:
            log = self.messages[topic]
            log.append((env.key, bytes(value), dict(env.headers)))
            result = PublishResult(topic=topic, partition=0, offset=len(log) - 1)
        for m in self.middlewares:
            m.after_publish(topic, env, result)
        return result

    def decoded(self, topic: str) -> List[dict]:
        with self._lock:
            return [self.serializer.loads(value) for _, value, _ in self.messages.get(topic, [])]

    def close(self) -> None:
        self._closed = True
