"""
Provider webhook intake.

Providers only look at the status code: 200 means "stop redelivering", so
both first deliveries and duplicates are acknowledged with 200. A bad
signature gets a bare 400 and nothing is stored.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from api.dependencies import get_webhook_service
from application.services.webhook_service import WebhookService
from domain.common.exceptions import SignatureInvalidException


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/{provider}", summary="Receive provider webhook")
async def receive_webhook(
    provider: str,
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    body = await request.body()
    try:
        ack = await service.admit(provider.lower(), request.headers, body)
    except SignatureInvalidException:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"received": False})
    return {"received": True, "eventId": ack.provider_event_id}
