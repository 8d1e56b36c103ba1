"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import payments as payments_routes
from api.routes import subscriptions as subscriptions_routes
from api.routes import webhooks as webhooks_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.container import Container, build_container
from infrastructure.database import create_tables


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


def create_app(container: Optional[Container] = None) -> FastAPI:
    """构建应用；传入 container 时由调用方负责其生命周期（测试使用）"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        current = container or build_container(settings, payment_settings)
        # 开发环境自动建表；生产使用 Alembic 迁移
        if owned and settings.DEBUG:
            await create_tables(current.engine)
            logger.info("database_initialized", message="Database tables created (development)")
        elif owned:
            logger.info(
                "database_migrations_required",
                message="No auto-create in production, use Alembic migrations (alembic upgrade head)",
            )
        if not payment_settings.webhook.process_inline:
            from infrastructure.tasks import TaskDispatcher

            current.webhooks.set_dispatcher(TaskDispatcher().process_webhook_event)
            logger.info("webhook_dispatch_async", message="Webhook events are processed by Celery workers")
        app.state.container = current
        logger.info("application_started", providers=sorted(current.gateways))

        yield

        if owned:
            await current.aclose()
        logger.info("application_shutdown", message="Application shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="Payment and subscription consistency service",
    )

    # 中间件按添加的逆序执行：RequestID 最先，日志依赖 request_id
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(payments_routes.router, prefix="/api/v1")
    app.include_router(subscriptions_routes.router, prefix="/api/v1")
    app.include_router(webhooks_routes.router, prefix="/api/v1")

    @app.get("/", tags=["Root"])
    async def root():
        return success_response(
            data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
            message="Welcome",
        )

    @app.get("/health", tags=["Health"])
    async def health_check():
        return success_response(data={"status": "healthy"}, message="OK")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
