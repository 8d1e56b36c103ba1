"""
Payments API routes.

Thin layer over ``PaymentService``: parse, delegate, wrap the view in the
unified response envelope. Mutation errors are rendered by the global
handlers with the aggregate's current state in ``data``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from api.dependencies import get_idempotency_service, get_payment_service
from api.routes._idempotent import run_idempotent
from application.dtos.payments import CancelPaymentCommand, CreatePaymentCommand, RefundPaymentCommand
from application.services.idempotency_service import IdempotencyService
from application.services.payment_service import PaymentService
from core.response import success_response


router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create payment")
async def create_payment(
    payload: CreatePaymentCommand,
    request: Request,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=255),
    service: PaymentService = Depends(get_payment_service),
    idempotency: IdempotencyService = Depends(get_idempotency_service),
):
    async def operation():
        view = await service.create_payment(payload)
        body = success_response(data=view.model_dump(mode="json"), message="Payment created")
        return status.HTTP_201_CREATED, body.model_dump(mode="json")

    return await run_idempotent(
        request,
        idempotency,
        idempotency_key,
        body=payload.model_dump(mode="json"),
        user_id=payload.user_id,
        operation=operation,
    )


@router.get("/{payment_id}", summary="Get payment")
async def get_payment(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    view = await service.get_payment(payment_id)
    return success_response(data=view.model_dump(mode="json"))


@router.get("/{payment_id}/transactions", summary="List ledger entries of a payment")
async def list_transactions(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    views = await service.list_transactions(payment_id)
    return success_response(data=[v.model_dump(mode="json") for v in views])


@router.post("/{payment_id}/verify", summary="Reconcile payment with the provider")
async def verify_payment(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    view = await service.verify_payment(payment_id)
    return success_response(data=view.model_dump(mode="json"), message="Payment verified")


@router.post("/{payment_id}/refunds", summary="Refund payment")
async def refund_payment(
    payment_id: str,
    payload: RefundPaymentCommand,
    request: Request,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=255),
    service: PaymentService = Depends(get_payment_service),
    idempotency: IdempotencyService = Depends(get_idempotency_service),
):
    async def operation():
        view = await service.refund_payment(payment_id, payload)
        body = success_response(data=view.model_dump(mode="json"), message="Refund accepted")
        return status.HTTP_200_OK, body.model_dump(mode="json")

    return await run_idempotent(
        request,
        idempotency,
        idempotency_key,
        body=payload.model_dump(mode="json"),
        user_id=None,
        operation=operation,
    )


@router.post("/{payment_id}/cancel", summary="Cancel payment")
async def cancel_payment(
    payment_id: str,
    payload: Optional[CancelPaymentCommand] = None,
    service: PaymentService = Depends(get_payment_service),
):
    view = await service.cancel_payment(payment_id, payload or CancelPaymentCommand())
    return success_response(data=view.model_dump(mode="json"), message="Payment cancelled")
