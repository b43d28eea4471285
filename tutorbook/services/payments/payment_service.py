"""
Coordinación entre la reserva y la pasarela de pago.

- `initiate_payment` crea el Payment y pide un intent a la pasarela, con
  reintentos y un timeout total.
- `confirm_payment` es el reductor idempotente de los callbacks de la
  pasarela: `succeeded` y `refunded` son puntos fijos.
- `refund_payment` devuelve pagos de reservas que ya no se impartirán.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.configs.settings import settings
from tutorbook.cores.db import utcnow
from tutorbook.cores.exceptions import (
    ExpiredHold,
    InvalidBookingState,
    InvalidTransition,
    NotFound,
    PaymentAlreadyActive,
    PaymentGatewayError,
    StaleState,
)
from tutorbook.cores.security import Actor, SYSTEM_ACTOR
from tutorbook.models.booking.bookings import Booking
from tutorbook.models.booking.payment_bookings import Payment
from tutorbook.models.common.status import (
    ACTIVE_PAYMENT_STATUSES,
    BookingStatus,
    PaymentStatus,
)
from tutorbook.services.bookings.authorization_service import ensure_allowed, ensure_can_view
from tutorbook.services.bookings.booking_service import (
    apply_payment_failed,
    apply_payment_succeeded,
    ensure_hold_active,
    expire_hold,
    finish_transition,
    record_late_payment,
    visibility_clause,
)
from tutorbook.services.bookings import policies
from tutorbook.services.bookings.booking_store import compare_and_commit, get_booking
from tutorbook.services.bookings.state_machine import TransitionEvent

logger = logging.getLogger(__name__)

# Reintentos del reductor ante conflictos de concurrencia sobre la reserva
STALE_RETRIES = 5

REFUNDABLE_BOOKING_STATUSES = {BookingStatus.CANCELLED.value, BookingStatus.DECLINED.value}


# ==================== CONSULTAS ====================

async def _get_payment(db: AsyncSession, payment_id: int) -> Payment:
    result = await db.execute(
        select(Payment)
        .where(Payment.id == payment_id)
        .execution_options(populate_existing=True)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFound("Payment not found")
    return payment


async def _find_payment(db: AsyncSession, intent_id: Optional[str], payment_id: Optional[int]) -> Payment:
    if intent_id:
        result = await db.execute(select(Payment).where(Payment.stripe_payment_intent_id == intent_id))
        payment = result.scalar_one_or_none()
        if payment:
            return payment
    # Intents cuya creación venció por timeout aún no tienen el id guardado
    if payment_id is not None:
        payment = await _get_payment(db, payment_id)
        if payment.stripe_payment_intent_id and intent_id and payment.stripe_payment_intent_id != intent_id:
            raise NotFound(f"Payment {payment_id} does not belong to intent {intent_id}")
        return payment
    raise NotFound(f"No payment found for intent {intent_id}")


async def _active_payment(db: AsyncSession, booking_id: int) -> Optional[Payment]:
    result = await db.execute(
        select(Payment).where(
            Payment.booking_id == booking_id,
            Payment.status.in_([s.value for s in ACTIVE_PAYMENT_STATUSES]),
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def _has_other_succeeded_payment(db: AsyncSession, booking_id: int, payment_id: int) -> bool:
    result = await db.execute(
        select(Payment.id).where(
            Payment.booking_id == booking_id,
            Payment.id != payment_id,
            Payment.status == PaymentStatus.SUCCEEDED.value,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


# ==================== INICIO DEL PAGO ====================

async def _create_intent_with_retry(gateway, payment: Payment, metadata: dict):
    attempts = max(1, settings.GATEWAY_MAX_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            return await gateway.create_intent(
                amount=payment.amount,
                currency=payment.currency,
                metadata=metadata,
                idempotency_key=f"payment-{payment.id}",
            )
        except PaymentGatewayError as e:
            if attempt == attempts:
                raise
            delay = settings.GATEWAY_BACKOFF_SECONDS * 2 ** (attempt - 1)
            logger.warning(f"⚠️ Intento {attempt}/{attempts} fallido para el pago {payment.id}: {e.message}. Reintentando en {delay}s")
            await asyncio.sleep(delay)


async def initiate_payment(
    db: AsyncSession,
    actor: Actor,
    booking_id: int,
    gateway,
    timeout: float = None,
    now: datetime = None,
) -> dict:
    now = now or utcnow()
    timeout = settings.PAYMENT_TIMEOUT_SECONDS if timeout is None else timeout

    booking = await get_booking(db, booking_id)
    ensure_can_view(actor, booking)
    ensure_allowed(actor, booking, TransitionEvent.INITIATE_PAYMENT)
    if booking.status != BookingStatus.ACCEPTED:
        raise InvalidBookingState(f"Payment can only be initiated for accepted bookings (status '{booking.status}')")
    try:
        await ensure_hold_active(db, booking, now)
    except ExpiredHold:
        raise InvalidBookingState("The payment window for this booking has expired")

    if await _active_payment(db, booking_id):
        raise PaymentAlreadyActive("A payment is already in progress or completed for this booking")

    payment = Payment(
        booking_id=booking.id,
        amount=booking.price,
        currency=booking.currency,
        status=PaymentStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    # El Payment se inserta con la versión leída: de dos inicios simultáneos solo uno confirma
    try:
        booking, _ = await compare_and_commit(db, booking, {}, now=now, pending=[payment])
    except StaleState:
        if await _active_payment(db, booking_id):
            raise PaymentAlreadyActive("A payment is already in progress or completed for this booking")
        raise

    metadata = {
        "booking_id": booking.id,
        "payment_id": payment.id,
        "student_id": booking.student_id,
        "tutor_id": booking.tutor_id,
    }
    try:
        handle = await asyncio.wait_for(_create_intent_with_retry(gateway, payment, metadata), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"❌ Timeout de la pasarela para el pago {payment.id} ({timeout}s)")
        await _reduce(db, payment.id, PaymentStatus.FAILED, error="Payment gateway timed out", now=now)
        raise PaymentGatewayError("Payment gateway timed out")
    except PaymentGatewayError as e:
        logger.error(f"❌ La pasarela rechazó el pago {payment.id}: {e.message}")
        await _reduce(db, payment.id, PaymentStatus.FAILED, error=e.message, now=now)
        raise

    payment = await _get_payment(db, payment.id)
    payment.stripe_payment_intent_id = handle.intent_id
    payment.client_secret = handle.client_secret
    await db.commit()

    logger.info(f"💳 Pago {payment.id} iniciado para la reserva {booking.id}: {handle.intent_id}")
    return {
        "payment_id": payment.id,
        "payment_intent_id": handle.intent_id,
        "client_secret": handle.client_secret,
        "amount": payment.amount,
        "currency": payment.currency,
    }


# ==================== RECONCILIACIÓN ====================

async def _auto_refund(db: AsyncSession, payment_id: int, gateway):
    if gateway is None:
        logger.warning(f"⚠️ El pago {payment_id} requiere reembolso manual")
        return None
    try:
        return await refund_payment(db, SYSTEM_ACTOR, payment_id, gateway)
    except (PaymentGatewayError, InvalidTransition, StaleState) as e:
        logger.error(f"❌ Reembolso automático fallido para el pago {payment_id}: {e.message}")
        return None


async def _apply_success(db: AsyncSession, payment: Payment, booking: Booking, now: datetime, gateway):
    if booking.status == BookingStatus.ACCEPTED and not booking.is_paid:
        booking, event = await apply_payment_succeeded(db, booking, payment.stripe_payment_intent_id, now)
        await finish_transition(db, booking, event)
        return

    if booking.is_paid:
        await db.commit()
        if booking.payment_intent_id == payment.stripe_payment_intent_id:
            return
        # Cobro duplicado: la reserva ya quedó pagada con otro intent
        logger.warning(f"⚠️ Cobro duplicado {payment.stripe_payment_intent_id} en la reserva {booking.id}")
        await _auto_refund(db, payment.id, gateway)
        return

    booking = await record_late_payment(db, booking, payment.stripe_payment_intent_id, now)
    if booking.status in REFUNDABLE_BOOKING_STATUSES:
        await _auto_refund(db, payment.id, gateway)


async def _reduce(
    db: AsyncSession,
    payment_id: int,
    outcome: PaymentStatus,
    intent_id: str = None,
    error: str = None,
    now: datetime = None,
    gateway=None,
) -> Payment:
    now = now or utcnow()
    for _ in range(STALE_RETRIES):
        payment = await _get_payment(db, payment_id)
        booking = await get_booking(db, payment.booking_id)

        if outcome == PaymentStatus.SUCCEEDED:
            if payment.status in (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED):
                logger.info(f"El pago {payment.id} ya estaba en {payment.status}; callback ignorado")
                return payment
            if booking.status == BookingStatus.ACCEPTED and not booking.is_paid:
                try:
                    await ensure_hold_active(db, booking, now)
                except (ExpiredHold, StaleState):
                    continue

            payment.status = PaymentStatus.SUCCEEDED.value
            payment.error = None
            if intent_id and not payment.stripe_payment_intent_id:
                payment.stripe_payment_intent_id = intent_id
            try:
                await _apply_success(db, payment, booking, now, gateway)
            except StaleState:
                continue
            return await _get_payment(db, payment_id)

        if payment.status != PaymentStatus.PENDING:
            logger.info(f"El pago {payment.id} ya estaba en {payment.status}; fallo ignorado")
            return payment

        payment.status = PaymentStatus.FAILED.value
        payment.error = (error or "Payment failed")[:255]
        if intent_id and not payment.stripe_payment_intent_id:
            payment.stripe_payment_intent_id = intent_id
        try:
            if booking.status == BookingStatus.ACCEPTED and policies.hold_expired(booking, now):
                # El Payment fallido se confirma en el mismo commit que la cancelación
                booking, event = await expire_hold(db, booking, now)
                await finish_transition(db, booking, event)
            elif booking.status == BookingStatus.ACCEPTED:
                booking, event = await apply_payment_failed(db, booking, payment.error, now)
                await finish_transition(db, booking, event)
            else:
                await db.commit()
        except StaleState:
            continue
        return await _get_payment(db, payment_id)

    raise StaleState(f"Could not reconcile payment {payment_id}; retry later")


async def confirm_payment(
    db: AsyncSession,
    intent_id: Optional[str],
    outcome,
    gateway=None,
    payment_id: int = None,
    error: str = None,
    now: datetime = None,
) -> Payment:
    """Callback idempotente de la pasarela."""
    outcome = PaymentStatus(outcome)
    if outcome not in (PaymentStatus.SUCCEEDED, PaymentStatus.FAILED):
        raise InvalidTransition(f"Unsupported payment outcome '{outcome.value}'")

    payment = await _find_payment(db, intent_id, payment_id)
    return await _reduce(db, payment.id, outcome, intent_id=intent_id, error=error, now=now, gateway=gateway)


async def handle_webhook(db: AsyncSession, payload: bytes, signature: str, gateway) -> dict:
    event = gateway.parse_webhook(payload, signature)

    if event.type == "payment_intent.succeeded":
        outcome = PaymentStatus.SUCCEEDED
    elif event.type == "payment_intent.payment_failed":
        outcome = PaymentStatus.FAILED
    else:
        logger.info(f"Evento de webhook ignorado: {event.type}")
        return {"received": True, "handled": False}

    payment_id = event.metadata.get("payment_id")
    payment = await confirm_payment(
        db,
        event.intent_id,
        outcome,
        gateway=gateway,
        payment_id=int(payment_id) if payment_id else None,
        error=event.error,
    )
    return {"received": True, "handled": True, "payment_id": payment.id, "status": payment.status}


# ==================== REEMBOLSOS ====================

async def refund_payment(db: AsyncSession, actor: Actor, payment_id: int, gateway, now: datetime = None) -> Payment:
    now = now or utcnow()
    payment = await _get_payment(db, payment_id)
    booking = await get_booking(db, payment.booking_id)
    ensure_allowed(actor, booking, TransitionEvent.REFUND)

    if payment.status != PaymentStatus.SUCCEEDED:
        raise InvalidTransition(f"Only succeeded payments can be refunded (status '{payment.status}')")
    settling = booking.payment_intent_id == payment.stripe_payment_intent_id
    if settling and booking.status not in REFUNDABLE_BOOKING_STATUSES:
        raise InvalidBookingState(f"Payments for {booking.status} bookings cannot be refunded")

    refund_id = await gateway.refund(
        payment.stripe_payment_intent_id,
        metadata={"booking_id": booking.id, "payment_id": payment.id},
    )

    for _ in range(STALE_RETRIES):
        payment = await _get_payment(db, payment_id)
        if payment.status == PaymentStatus.REFUNDED:
            return payment
        booking = await get_booking(db, payment.booking_id)

        payment.status = PaymentStatus.REFUNDED.value
        payment.stripe_refund_id = refund_id
        still_paid = await _has_other_succeeded_payment(db, booking.id, payment.id)
        try:
            await compare_and_commit(db, booking, {"is_paid": still_paid}, now=now)
        except StaleState:
            continue
        logger.info(f"💸 Pago {payment.id} reembolsado ({refund_id}) para la reserva {booking.id}")
        return await _get_payment(db, payment_id)

    raise StaleState(f"Refund {refund_id} recorded by the gateway but not yet stored; retry")


async def refund_closed_booking(db: AsyncSession, booking: Booking, gateway) -> list:
    """Reembolsa los pagos exitosos de una reserva cancelada o rechazada."""
    if booking.status not in REFUNDABLE_BOOKING_STATUSES or not booking.is_paid:
        return []
    result = await db.execute(
        select(Payment.id).where(
            Payment.booking_id == booking.id,
            Payment.status == PaymentStatus.SUCCEEDED.value,
        )
    )
    refunded = []
    for payment_id in result.scalars().all():
        payment = await _auto_refund(db, payment_id, gateway)
        if payment is not None:
            refunded.append(payment)
    return refunded


# ==================== HISTORIAL ====================

async def get_payment_history(db: AsyncSession, actor: Actor) -> list:
    result = await db.execute(
        select(Payment, Booking)
        .join(Booking, Booking.id == Payment.booking_id)
        .where(visibility_clause(actor))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    return [
        {
            "id": payment.id,
            "booking_id": booking.id,
            "amount": payment.amount,
            "currency": payment.currency,
            "status": payment.status,
            "payment_intent_id": payment.stripe_payment_intent_id,
            "error": payment.error,
            "subject": booking.subject,
            "scheduled_at": booking.scheduled_at,
            "created_at": payment.created_at,
        }
        for payment, booking in result.all()
    ]
