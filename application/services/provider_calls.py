"""
Timeout + retry policy around provider gateway calls.

Gateways never retry on their own. Every call goes through ``ProviderCaller``:

- the whole call is bounded by ``timeouts.total``;
- ``ProviderTransientError`` is retried with exponential backoff, bounded by
  ``retry.max_attempts``;
- a timeout on a read is transient; a timeout on a mutating call is
  ambiguous (the provider may have applied it) and is raised as
  ``ProviderAmbiguousError`` without retry so the caller can reconcile
  with ``verify_payment``.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from core.settings import PaymentRetry, PaymentTimeouts
from domain.common.exceptions import ProviderAmbiguousError, ProviderTransientError


logger = get_logger(__name__)

T = TypeVar("T")


class ProviderCaller:
    def __init__(self, retry: PaymentRetry, timeouts: PaymentTimeouts) -> None:
        self._retry = retry
        self._timeouts = timeouts

    async def call(
        self,
        provider: str,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        *,
        mutating: bool,
    ) -> T:
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "provider_call_retry",
                provider=provider,
                operation=operation,
                attempt=state.attempt_number,
                error=str(exc) if exc else None,
            )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self._retry.max_attempts)),
            wait=wait_exponential(multiplier=self._retry.base_backoff, min=self._retry.base_backoff, max=self._retry.max_backoff),
            retry=retry_if_exception_type(ProviderTransientError),
            before_sleep=_before_sleep,
            reraise=True,
        ):
            with attempt:
                return await self._once(provider, operation, fn, mutating=mutating)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _once(self, provider: str, operation: str, fn: Callable[[], Awaitable[T]], *, mutating: bool) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self._timeouts.total)
        except asyncio.TimeoutError as exc:
            logger.warning("provider_call_timeout", provider=provider, operation=operation, mutating=mutating)
            if mutating:
                raise ProviderAmbiguousError(
                    f"{provider} {operation} timed out; outcome unknown",
                    provider=provider,
                    details={"operation": operation},
                ) from exc
            raise ProviderTransientError(
                f"{provider} {operation} timed out",
                provider=provider,
                details={"operation": operation},
            ) from exc
