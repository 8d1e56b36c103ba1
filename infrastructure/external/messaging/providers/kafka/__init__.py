from .publisher import KafkaPublisher

__all__ = ["KafkaPublisher"]
