"""Subscription API routes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from api.dependencies import get_idempotency_service, get_subscription_service
from api.routes._idempotent import run_idempotent
from application.dtos.payments import CancelSubscriptionCommand, CreateSubscriptionCommand
from application.services.idempotency_service import IdempotencyService
from application.services.subscription_service import SubscriptionService
from core.response import success_response


router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create subscription")
async def create_subscription(
    payload: CreateSubscriptionCommand,
    request: Request,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=255),
    service: SubscriptionService = Depends(get_subscription_service),
    idempotency: IdempotencyService = Depends(get_idempotency_service),
):
    async def operation():
        view = await service.create_subscription(payload)
        body = success_response(data=view.model_dump(mode="json"), message="Subscription created")
        return status.HTTP_201_CREATED, body.model_dump(mode="json")

    return await run_idempotent(
        request,
        idempotency,
        idempotency_key,
        body=payload.model_dump(mode="json"),
        user_id=payload.user_id,
        operation=operation,
    )


@router.get("/{subscription_id}", summary="Get subscription")
async def get_subscription(subscription_id: str, service: SubscriptionService = Depends(get_subscription_service)):
    view = await service.get_subscription(subscription_id)
    return success_response(data=view.model_dump(mode="json"))


@router.post("/{subscription_id}/cancel", summary="Cancel subscription")
async def cancel_subscription(
    subscription_id: str,
    payload: Optional[CancelSubscriptionCommand] = None,
    service: SubscriptionService = Depends(get_subscription_service),
):
    view = await service.cancel_subscription(subscription_id, payload or CancelSubscriptionCommand())
    return success_response(data=view.model_dump(mode="json"), message="Subscription cancellation accepted")
