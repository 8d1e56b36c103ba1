from .base import Envelope, PublishResult, Publisher, Serializer
from .config import KafkaConfig, MessagingConfig, ProducerTuning, SASLConfig, TLSConfig
from .config_builder import messaging_config_from_settings
from .event_publisher import MessagingEventPublisher
from .factory import create_publisher
from .serializers.json import JsonSerializer

__all__ = [
    "Envelope",
    "PublishResult",
    "Publisher",
    "Serializer",
    "MessagingConfig",
    "KafkaConfig",
    "ProducerTuning",
    "TLSConfig",
    "SASLConfig",
    "messaging_config_from_settings",
    "MessagingEventPublisher",
    "create_publisher",
    "JsonSerializer",
]
