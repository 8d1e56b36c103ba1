from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.config import KafkaSettings, MessagingSettings
from infrastructure.external.messaging import (
    JsonSerializer,
    KafkaConfig,
    MessagingEventPublisher,
    SASLConfig,
    TLSConfig,
    messaging_config_from_settings,
)
from infrastructure.external.messaging.exceptions import PublishError, SerializationError
from infrastructure.external.messaging.providers.inmemory import InMemoryPublisher
from infrastructure.external.messaging.providers.kafka.publisher import producer_conf


def test_serializer_keeps_amounts_exact():
    data = JsonSerializer().dumps({"amount": Decimal("99.99"), "at": datetime(2024, 1, 31, 12, tzinfo=timezone.utc)})
    assert data == b'{"amount":"99.99","at":"2024-01-31T12:00:00Z"}'
    with pytest.raises(SerializationError):
        JsonSerializer().dumps({"bad": object()})


@pytest.mark.asyncio
async def test_event_publisher_sets_key_and_headers():
    broker = InMemoryPublisher(JsonSerializer())
    message = {"eventId": "evt_1", "eventType": "payment.succeeded", "aggregateId": "pay_1", "payload": {}}

    result = await MessagingEventPublisher(broker).publish("paysync.payment", "pay_1", message)

    assert (result.topic, result.offset) == ("paysync.payment", 0)
    ((key, _, headers),) = broker.messages["paysync.payment"]
    assert key == b"pay_1"
    assert headers == {"x-event-id": b"evt_1", "x-event-type": b"payment.succeeded"}
    assert broker.decoded("paysync.payment") == [message]


@pytest.mark.asyncio
async def test_closed_publisher_refuses_messages():
    broker = InMemoryPublisher(JsonSerializer())
    broker.close()
    with pytest.raises(PublishError):
        await MessagingEventPublisher(broker).publish("paysync.payment", "pay_1", {"eventId": "evt_1"})


def test_producer_conf_for_plaintext_and_sasl_ssl():
    plain = producer_conf(KafkaConfig())
    assert plain["security.protocol"] == "PLAINTEXT"
    assert plain["enable.idempotence"] is True
    assert plain["acks"] == "all"
    assert "sasl.mechanism" not in plain

    secured = producer_conf(
        KafkaConfig(
            tls=TLSConfig(enable=True, ca_location="/etc/ca.pem"),
            sasl=SASLConfig(mechanism="SCRAM-SHA-512", username="relay", password="s3cret"),
        )
    )
    assert secured["security.protocol"] == "SASL_SSL"
    assert secured["ssl.ca.location"] == "/etc/ca.pem"
    assert "ssl.key.location" not in secured
    assert secured["sasl.username"] == "relay"


def test_config_builder_maps_settings():
    cfg = messaging_config_from_settings(
        MessagingSettings(provider="kafka", topic_prefix="billing"),
        KafkaSettings(bootstrap_servers="kafka:9092", producer_linger_ms=20),
    )
    assert cfg.provider == "kafka"
    assert cfg.topic_prefix == "billing"
    assert cfg.kafka.bootstrap_servers == "kafka:9092"
    assert cfg.kafka.producer.linger_ms == 20

    fallback = messaging_config_from_settings(MessagingSettings(provider="rabbit"), KafkaSettings())
    assert fallback.provider == "inmemory"
