"""Messaging configuration dataclasses, filled from settings by ``config_builder``."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional


@dataclass(slots=True)
class TLSConfig:
    enable: bool = False
    ca_location: Optional[str] = None
    certificate: Optional[str] = None
    key: Optional[str] = None
    verify: bool = True


@dataclass(slots=True)
class SASLConfig:
    mechanism: Optional[str] = None  # PLAIN / SCRAM-SHA-256 / SCRAM-SHA-512
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(slots=True)
class ProducerTuning:
    # idempotent producer with acks=all: a retried send never duplicates or reorders within a key
    acks: str = "all"
    enable_idempotence: bool = True
    compression_type: str = "zstd"
    linger_ms: int = 5
    max_in_flight: int = 5
    message_timeout_ms: int = 120_000
    delivery_wait_s: float = 30.0


@dataclass(slots=True)
class KafkaConfig:
    bootstrap_servers: str = "localhost:9092"
    client_id: str = "paysync-outbox"
    tls: TLSConfig = field(default_factory=TLSConfig)
    sasl: SASLConfig = field(default_factory=SASLConfig)
    producer: ProducerTuning = field(default_factory=ProducerTuning)

    @property
    def security_protocol(self) -> str:
        if self.tls.enable:
            return "SASL_SSL" if self.sasl.mechanism else "SSL"
        return "SASL_PLAINTEXT" if self.sasl.mechanism else "PLAINTEXT"


@dataclass(slots=True)
class MessagingConfig:
    provider: Literal["kafka", "inmemory"] = "inmemory"
    topic_prefix: str = "paysync"
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
