"""Utility helpers for Celery tasks."""
from .dispatcher import TaskDispatcher
from .base_task import BaseTask
from .runtime import run_with_container

__all__ = ["TaskDispatcher", "BaseTask", "run_with_container"]
