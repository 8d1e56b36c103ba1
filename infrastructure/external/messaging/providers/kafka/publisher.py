from __future__ import annotations

import time
from typing import List, Optional

from confluent_kafka import KafkaException, Producer

from ...base import Envelope, PublishMiddleware, PublishResult, Publisher, Serializer
from ...config import KafkaConfig
from ...exceptions import DeliveryTimeout, PublishError, PublisherClosed


def producer_conf(cfg: KafkaConfig) -> dict:
    """librdkafka configuration for the outbox producer."""
    conf: dict = {
        "bootstrap.servers": cfg.bootstrap_servers,
        "client.id": cfg.client_id,
        "security.protocol": cfg.security_protocol,
        "enable.idempotence": cfg.producer.enable_idempotence,
        "acks": cfg.producer.acks,
        "compression.type": cfg.producer.compression_type,
        "linger.ms": cfg.producer.linger_ms,
        "max.in.flight.requests.per.connection": cfg.producer.max_in_flight,
        "message.timeout.ms": cfg.producer.message_timeout_ms,
    }
    if cfg.tls.enable:
        conf["ssl.ca.location"] = cfg.tls.ca_location
        conf["ssl.certificate.location"] = cfg.tls.certificate
        conf["ssl.key.location"] = cfg.tls.key
        conf["enable.ssl.certificate.verification"] = cfg.tls.verify
    if cfg.sasl.mechanism:
        conf["sasl.mechanism"] = cfg.sasl.mechanism
        conf["sasl.username"] = cfg.sasl.username
        conf["sasl.password"] = cfg.sasl.password
    return {k: v for k, v in conf.items() if v is not None}


class KafkaPublisher(Publisher):
    """Synchronous wrapper over the confluent producer.

    Each ``publish`` waits for the delivery report of its own message, so a
    return means the broker stored it. Callers run it in a worker thread.
    """

    def __init__(
        self,
        cfg: KafkaConfig,
        serializer: Serializer,
        middlewares: Optional[List[PublishMiddleware]] = None,
    ) -> None:
        self.cfg = cfg
        self.serializer = serializer
        self.middlewares = middlewares or []
        self._producer = Producer(producer_conf(cfg))
        self._delivery_wait_s = cfg.producer.delivery_wait_s
        self._closed = False

    def publish(self, topic: str, env: Envelope) -> PublishResult:
        if self._closed:
            raise PublisherClosed("kafka publisher is closed")
        for m in self.middlewares:
            env = m.before_publish(topic, env)
        value = env.payload if isinstance(env.payload, (bytes, bytearray)) else self.serializer.dumps(env.payload)

        report: dict = {}

        def on_delivery(err, msg):
            if err is not None:
                report["error"] = err
            else:
                report["result"] = PublishResult(topic=msg.topic(), partition=msg.partition(), offset=msg.offset())

        deadline = time.monotonic() + self._delivery_wait_s
        self._produce(topic, env, bytes(value), on_delivery, deadline)
        while not report:
            self._producer.poll(0.05)
            if time.monotonic() >= deadline:
                raise DeliveryTimeout(f"no delivery report for {topic} key={env.key_text} within {self._delivery_wait_s}s")

        if "error" in report:
            raise PublishError(str(report["error"]))
        result = report["result"]
        for m in self.middlewares:
            m.after_publish(topic, env, result)
        return result

    def _produce(self, topic: str, env: Envelope, value: bytes, on_delivery, deadline: float) -> None:
        while True:
            try:
                self._producer.produce(
                    topic=topic,
                    key=env.key,
                    value=value,
                    headers=list(env.headers.items()),
                    on_delivery=on_delivery,
                )
                return
            except BufferError:
                # local queue full: serve callbacks until there is room
                self._producer.poll(0.1)
                if time.monotonic() >= deadline:
                    raise DeliveryTimeout("producer queue stayed full")
            except KafkaException as exc:
                raise PublishError(str(exc)) from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        remaining = self._producer.flush(5)
        if remaining:
            raise PublishError(f"{remaining} message(s) still queued on close")
