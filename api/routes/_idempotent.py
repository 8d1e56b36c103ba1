"""Shared plumbing for routes that honour the ``Idempotency-Key`` header."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from application.services.idempotency_service import IdempotencyService
from core.exceptions import business_error_body


REPLAY_HEADER = "Idempotent-Replayed"


async def run_idempotent(
    request: Request,
    idempotency: IdempotencyService,
    key: Optional[str],
    *,
    body: Any,
    user_id: Optional[str],
    operation: Callable[[], Awaitable[tuple[int, Any]]],
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    result = await idempotency.run(
        key,
        method=request.method,
        path=request.url.path,
        body=body,
        user_id=user_id,
        operation=operation,
        render_error=lambda exc: business_error_body(exc, request_id),
    )
    headers = {REPLAY_HEADER: "true"} if result.replayed else None
    return JSONResponse(status_code=result.status_code, content=result.body, headers=headers)
