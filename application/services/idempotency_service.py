"""
Idempotency store for mutating API requests.

``reserve`` is a unique-constraint insert in its own transaction, so two
concurrent callers with the same key can never both get ``Fresh``. The
winner executes and ``commit``s the response; everybody else sees
``Replayed`` (same fingerprint), ``Conflict`` (different request) or
``InProgress`` (winner has not committed yet).

Business errors are durable outcomes: the aggregate was persisted before the
error was raised, so the rendered error is stored and replayed like a
success. Anything else releases the key so the caller may retry.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    ConcurrencyConflictException,
    IdempotencyConflictException,
    IdempotencyInProgressException,
)
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.idempotency.entity import IdempotencyRecord
from domain.idempotency.repository import IdempotencyKeyTaken
from shared.codes import http_status_for


logger = get_logger(__name__)

UowFactory = Callable[..., AbstractUnitOfWork]


def request_fingerprint(method: str, path: str, body: Any) -> str:
    """sha256 over method, path and the canonical JSON body."""
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)
    digest = hashlib.sha256()
    digest.update(method.upper().encode("utf-8"))
    digest.update(b"\n")
    digest.update(path.encode("utf-8"))
    digest.update(b"\n")
    digest.update(canonical.encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class Fresh:
    key: str


@dataclass(frozen=True)
class Replayed:
    status_code: int
    body: Any


@dataclass(frozen=True)
class Conflict:
    key: str


@dataclass(frozen=True)
class InProgress:
    key: str


ReserveOutcome = Union[Fresh, Replayed, Conflict, InProgress]


@dataclass(frozen=True)
class IdempotentResult:
    status_code: int
    body: Any
    replayed: bool = False


class IdempotencyService:
    def __init__(self, uow_factory: UowFactory, *, ttl: timedelta = timedelta(hours=24)) -> None:
        self._uow_factory = uow_factory
        self._ttl = ttl

    async def reserve(
        self,
        key: str,
        *,
        method: str,
        path: str,
        fingerprint: str,
        user_id: Optional[str] = None,
    ) -> ReserveOutcome:
        now = utcnow()
        async with self._uow_factory() as uow:
            existing = await uow.idempotency.get(key)
            if existing is not None and existing.is_expired(now):
                await uow.idempotency.delete_if_expired(key, now)
                existing = None

        if existing is None:
            record = IdempotencyRecord.reserve(
                key=key,
                method=method,
                path=path,
                fingerprint=fingerprint,
                user_id=user_id,
                ttl=self._ttl,
                now=now,
            )
            try:
                async with self._uow_factory() as uow:
                    await uow.idempotency.insert(record)
                return Fresh(key)
            except IdempotencyKeyTaken:
                async with self._uow_factory(readonly=True) as uow:
                    existing = await uow.idempotency.get(key)
                if existing is None:
                    # 赢家已释放：视为仍在处理，由调用方重试
                    return InProgress(key)

        if not existing.matches(fingerprint, user_id):
            return Conflict(key)
        if not existing.completed:
            return InProgress(key)
        return Replayed(status_code=existing.response_status, body=existing.response_body)

    async def commit(self, key: str, status_code: int, body: Any) -> None:
        async with self._uow_factory() as uow:
            await uow.idempotency.complete(key, status_code, body, utcnow())

    async def release(self, key: str) -> None:
        async with self._uow_factory() as uow:
            await uow.idempotency.delete(key)

    async def run(
        self,
        key: Optional[str],
        *,
        method: str,
        path: str,
        body: Any,
        user_id: Optional[str],
        operation: Callable[[], Awaitable[tuple[int, Any]]],
        render_error: Callable[[BusinessException], Any],
    ) -> IdempotentResult:
        """Execute ``operation`` at most once per key.

        ``operation`` returns ``(status_code, json_body)``. Business errors
        are stored through ``render_error`` and re-raised for the caller's
        normal error handling.
        """
        if not key:
            status_code, response_body = await operation()
            return IdempotentResult(status_code, response_body)

        outcome = await self.reserve(
            key,
            method=method,
            path=path,
            fingerprint=request_fingerprint(method, path, body),
            user_id=user_id,
        )
        if isinstance(outcome, Conflict):
            logger.info("idempotency_conflict", key=key, path=path)
            raise IdempotencyConflictException(key)
        if isinstance(outcome, InProgress):
            raise IdempotencyInProgressException(key)
        if isinstance(outcome, Replayed):
            logger.info("idempotency_replayed", key=key, path=path, status_code=outcome.status_code)
            return IdempotentResult(outcome.status_code, outcome.body, replayed=True)

        try:
            status_code, response_body = await operation()
        except ConcurrencyConflictException:
            await self.release(key)
            raise
        except BusinessException as exc:
            await self.commit(key, http_status_for(exc.code), render_error(exc))
            raise
        except Exception:
            await self.release(key)
            raise
        await self.commit(key, status_code, response_body)
        return IdempotentResult(status_code, response_body)

    async def purge_expired(self) -> int:
        async with self._uow_factory() as uow:
            return await uow.idempotency.delete_expired(utcnow())
