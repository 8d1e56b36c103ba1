"""Run async service code from a synchronous Celery task."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from core.config import settings
from core.settings import payment_settings
from infrastructure.container import Container, build_container


T = TypeVar("T")


def run_with_container(work: Callable[[Container], Awaitable[T]]) -> T:
    """One event loop and one container per task run.

    The engine and the provider http clients are bound to the loop, so they
    are created inside it and closed before it ends.
    """

    async def _main() -> T:
        container = build_container(settings, payment_settings)
        try:
            return await work(container)
        finally:
            await container.aclose()

    return asyncio.run(_main())
