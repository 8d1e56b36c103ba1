"""
请求/响应日志中间件

method、path、request_id、幂等键已由 RequestIDMiddleware 绑定到上下文，
这里只补充耗时与状态码。请求体不落日志（webhook 原文与支付数据）。
"""
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        logger.info("request_started", query_params=dict(request.query_params) or None)
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - start, 4),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - start
        self._log_response(response, duration)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    def _log_response(self, response: Response, duration: float) -> None:
        status_code = response.status_code
        replayed = response.headers.get("Idempotent-Replayed") == "true"
        if status_code < 400:
            logger.info("request_completed", status_code=status_code, duration=round(duration, 4), replayed=replayed)
        elif status_code < 500:
            logger.warning("request_client_error", status_code=status_code, duration=round(duration, 4))
        else:
            logger.error("request_server_error", status_code=status_code, duration=round(duration, 4))
