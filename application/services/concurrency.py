"""Reload-and-retry for optimistic version conflicts."""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_random

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrencyConflictException


logger = get_logger(__name__)

T = TypeVar("T")


async def retry_on_conflict(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    aggregate_type: str,
    aggregate_id: str,
) -> T:
    """Run ``fn`` (one load → transition → conditional save) until it commits.

    Each attempt must reload the aggregate, so the domain checks run again on
    the fresh state. After ``attempts`` conflicts the last one propagates.
    """

    def _before_sleep(state: RetryCallState) -> None:
        logger.info(
            "concurrency_conflict_retry",
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            attempt=state.attempt_number,
        )

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_random(0, 0.05),
        retry=retry_if_exception_type(ConcurrencyConflictException),
        before_sleep=_before_sleep,
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
