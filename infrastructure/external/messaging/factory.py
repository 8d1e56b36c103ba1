from __future__ import annotations

from typing import List, Optional

from core.logging_config import get_logger

from .base import PublishMiddleware, Publisher, Serializer
from .config import MessagingConfig
from .providers.inmemory import InMemoryPublisher


logger = get_logger(__name__)


def create_publisher(
    cfg: MessagingConfig,
    serializer: Serializer,
    middlewares: Optional[List[PublishMiddleware]] = None,
) -> Publisher:
    """Build the publisher the outbox relay hands its events to."""
    if cfg.provider == "inmemory":
        logger.warning("inmemory_publisher_selected", message="Outbox events stay in process memory")
        return InMemoryPublisher(serializer, middlewares)
    if cfg.provider == "kafka":
        # librdkafka is only loaded when Kafka is configured
        from .providers.kafka import KafkaPublisher

        logger.info("kafka_publisher_selected", bootstrap_servers=cfg.kafka.bootstrap_servers)
        return KafkaPublisher(cfg.kafka, serializer, middlewares)
    raise ValueError(f"Unsupported messaging provider: {cfg.provider}")
