"""
API依赖项 - 从应用状态取出装配好的服务
"""
from fastapi import Depends, Request

from application.services.idempotency_service import IdempotencyService
from application.services.payment_service import PaymentService
from application.services.subscription_service import SubscriptionService
from application.services.webhook_service import WebhookService
from infrastructure.container import Container


def get_container(request: Request) -> Container:
    """lifespan 中构建的容器；测试可直接替换 app.state.container"""
    return request.app.state.container


async def get_payment_service(container: Container = Depends(get_container)) -> PaymentService:
    return container.payments


async def get_subscription_service(container: Container = Depends(get_container)) -> SubscriptionService:
    return container.subscriptions


async def get_webhook_service(container: Container = Depends(get_container)) -> WebhookService:
    return container.webhooks


async def get_idempotency_service(container: Container = Depends(get_container)) -> IdempotencyService:
    return container.idempotency
