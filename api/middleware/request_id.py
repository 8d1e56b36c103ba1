"""
Request ID 中间件

为每个请求生成或透传追踪 ID，并把它与幂等键、webhook 提供方一起绑定到
structlog 上下文；同一请求内的服务层日志因此都能按 request_id 串起来。
"""
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


WEBHOOK_PREFIX = "/api/v1/webhooks/"


class RequestIDMiddleware(BaseHTTPMiddleware):
    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        request.state.request_id = request_id

        context = {
            "request_id": request_id,
            "client_ip": client_ip(request),
            "method": request.method,
            "path": request.url.path,
        }
        idempotency_key = request.headers.get("Idempotency-Key")
        if idempotency_key:
            context["idempotency_key"] = idempotency_key
        if request.url.path.startswith(WEBHOOK_PREFIX):
            context["webhook_provider"] = request.url.path[len(WEBHOOK_PREFIX):].strip("/").lower()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers[self.HEADER_NAME] = request_id
        return response


def client_ip(request: Request) -> str:
    """优先取代理头中的原始客户端地址"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"
