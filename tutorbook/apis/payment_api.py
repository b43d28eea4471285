from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.apis.deps import get_current_actor, get_db, get_payment_gateway
from tutorbook.cores.security import Actor
from tutorbook.schemas.payments.payment_schema import (
    CreatePaymentIntentRequest,
    PaymentHistoryResponse,
    PaymentIntentResponse,
    PaymentResponse,
)
from tutorbook.services.payments.payment_service import (
    get_payment_history,
    handle_webhook,
    initiate_payment,
    refund_payment,
)

router = APIRouter()


@router.post("/create-intent", response_model=PaymentIntentResponse)
async def crear_intent(
    request: CreatePaymentIntentRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    gateway=Depends(get_payment_gateway),
):
    result = await initiate_payment(db, actor, request.booking_id, gateway)
    return {
        "success": True,
        "message": "Payment intent created",
        "data": result,
    }


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    payload = await request.body()
    return await handle_webhook(db, payload, stripe_signature or "", gateway)


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def reembolsar_pago(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    gateway=Depends(get_payment_gateway),
):
    payment = await refund_payment(db, actor, payment_id, gateway)
    return {
        "success": True,
        "message": "Payment refunded",
        "data": {
            "id": payment.id,
            "booking_id": payment.booking_id,
            "amount": payment.amount,
            "currency": payment.currency,
            "status": payment.status,
            "payment_intent_id": payment.stripe_payment_intent_id,
            "error": payment.error,
        },
    }


@router.get("/history", response_model=PaymentHistoryResponse)
async def historial_pagos(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    payments = await get_payment_history(db, actor)
    return {
        "success": True,
        "message": "Payment history retrieved",
        "data": payments,
    }
