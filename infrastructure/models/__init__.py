"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import PaymentModel
from .subscription import SubscriptionModel
from .transaction import TransactionModel
from .webhook_event import WebhookEventModel
from .idempotency import IdempotencyRecordModel
from .outbox import OutboxModel

__all__ = [
    "Base",
    "metadata",
    "PaymentModel",
    "SubscriptionModel",
    "TransactionModel",
    "WebhookEventModel",
    "IdempotencyRecordModel",
    "OutboxModel",
]
