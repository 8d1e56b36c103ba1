"""Task modules grouped by domain.

Import side effects register Celery tasks once this package is imported.
"""
from . import maintenance, outbox, payments, subscriptions, webhooks  # noqa: F401 to register tasks

__all__ = ["maintenance", "outbox", "payments", "subscriptions", "webhooks"]
