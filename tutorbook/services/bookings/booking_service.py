"""
Orquestador del ciclo de vida de las reservas.

Cada operación sigue el mismo orden de comprobaciones: versión esperada,
visibilidad, tabla de transiciones, permisos del actor y reglas de negocio.
Solo entonces se escribe mediante compare-and-commit; los eventos se
despachan después del commit.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, List

from sqlalchemy import select, true, false
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.configs.settings import settings
from tutorbook.cores.db import utcnow
from tutorbook.cores.exceptions import (
    ExpiredHold,
    InvalidBookingState,
    NotFound,
    StaleState,
    ValidationError,
)
from tutorbook.cores.security import Actor, SYSTEM_ACTOR
from tutorbook.models.booking.bookings import Booking
from tutorbook.models.booking.booking_event import BookingEvent
from tutorbook.models.common.educational_level import Level, Subject
from tutorbook.models.common.role import UserRole
from tutorbook.models.common.status import BookingStatus, RescheduleStatus
from tutorbook.models.users.user import User
from tutorbook.services.bookings import policies
from tutorbook.services.bookings.authorization_service import ensure_allowed, ensure_can_view
from tutorbook.services.bookings.booking_store import (
    check_expected_version,
    compare_and_commit,
    get_booking,
)
from tutorbook.services.bookings.room_service import generate_secure_room_link
from tutorbook.services.bookings.state_machine import TransitionEvent, validate_transition
from tutorbook.services.events.event_service import dispatch_events
from tutorbook.services.user.user_service import get_tutor_rate

logger = logging.getLogger(__name__)


async def finish_transition(db: AsyncSession, booking: Booking, *events) -> Booking:
    """Despacha los eventos ya confirmados y devuelve la reserva recargada."""
    await dispatch_events(db, events)
    return await get_booking(db, booking.id)


async def _load_for_actor(db: AsyncSession, actor: Actor, booking_id: int, expected_version: Optional[int]) -> Booking:
    booking = await get_booking(db, booking_id)
    check_expected_version(booking, expected_version)
    ensure_can_view(actor, booking)
    return booking


def _parse_enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown {label} '{value}'")


async def _get_user_with_role(db: AsyncSession, user_id: str, role: UserRole, label: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or user.role != role.value:
        raise NotFound(f"{label} not found")
    return user


def visibility_clause(actor: Actor):
    if actor.role in (UserRole.ADMIN, UserRole.SYSTEM):
        return true()
    if actor.role == UserRole.STUDENT:
        return Booking.student_id == actor.id
    if actor.role == UserRole.PARENT:
        if not actor.children_ids:
            return false()
        return Booking.student_id.in_(sorted(actor.children_ids))
    if actor.role == UserRole.TUTOR:
        return Booking.tutor_id == actor.id
    return false()


# ==================== CREACIÓN Y CONSULTA ====================

async def create_booking(
    db: AsyncSession,
    actor: Actor,
    tutor_id: str,
    subject,
    level,
    scheduled_at: datetime,
    duration: int = 60,
    student_id: str = None,
    now: datetime = None,
) -> Booking:
    now = now or utcnow()

    if student_id is None and actor.role == UserRole.STUDENT:
        student_id = actor.id
    if student_id is None and actor.role == UserRole.PARENT:
        raise ValidationError("student_id is required when booking on behalf of a student")

    booking = Booking(student_id=student_id, tutor_id=tutor_id)
    ensure_allowed(actor, booking, TransitionEvent.CREATE)

    subject = _parse_enum(Subject, subject, "subject")
    level = _parse_enum(Level, level, "level")
    duration = policies.validate_duration(duration)
    scheduled_at = policies.validate_schedule(scheduled_at, now)

    await _get_user_with_role(db, student_id, UserRole.STUDENT, "Student")
    await _get_user_with_role(db, tutor_id, UserRole.TUTOR, "Tutor")
    hourly_rate = await get_tutor_rate(db, tutor_id, level)

    booking.subject = subject.value
    booking.level = level.value
    booking.scheduled_at = scheduled_at
    booking.duration = duration
    booking.price = policies.compute_price(hourly_rate, duration)
    booking.currency = settings.CURRENCY
    booking.status = BookingStatus.PENDING.value
    booking.is_paid = False
    booking.payment_failure_count = 0
    booking.version = 1
    booking.created_at = now
    booking.updated_at = now
    db.add(booking)
    await db.flush()

    event = BookingEvent(
        booking_id=booking.id,
        event_type=TransitionEvent.CREATE.value,
        from_status=None,
        to_status=BookingStatus.PENDING.value,
        actor_id=actor.id,
        actor_role=actor.role.value,
        occurred_at=now,
    )
    db.add(event)
    await db.commit()

    logger.info(f"✅ Reserva {booking.id} creada por {actor.role.value} {actor.id} con el tutor {tutor_id}")
    return await finish_transition(db, booking, event)


async def get_booking_for_actor(db: AsyncSession, actor: Actor, booking_id: int) -> Booking:
    booking = await get_booking(db, booking_id)
    ensure_can_view(actor, booking)
    return booking


async def list_bookings(db: AsyncSession, actor: Actor, status=None) -> List[Booking]:
    query = select(Booking).where(visibility_clause(actor))
    if status is not None:
        status = _parse_enum(BookingStatus, status, "status")
        query = query.where(Booking.status == status.value)
    result = await db.execute(query.order_by(Booking.scheduled_at.desc(), Booking.id.desc()))
    return list(result.scalars().all())


# ==================== TRANSICIONES DEL TUTOR ====================

async def accept_booking(
    db: AsyncSession,
    actor: Actor,
    booking_id: int,
    expected_version: int = None,
    now: datetime = None,
) -> Booking:
    now = now or utcnow()
    booking = await _load_for_actor(db, actor, booking_id, expected_version)
    ensure_allowed(actor, booking, TransitionEvent.ACCEPT)
    target = validate_transition(booking.status, TransitionEvent.ACCEPT)

    booking, event = await compare_and_commit(
        db, booking,
        {"status": target, "accepted_at": now, "payment_error": None},
        actor=actor, event_type=TransitionEvent.ACCEPT, now=now,
    )
    events = [event]

    # Un pago tardío ya capturado confirma la reserva en cuanto se acepta
    if booking.is_paid and booking.payment_intent_id:
        logger.info(f"Reserva {booking.id} ya pagada: se confirma al aceptarla")
        booking, paid_event = await apply_payment_succeeded(db, booking, booking.payment_intent_id, now)
        events.append(paid_event)

    return await finish_transition(db, booking, *events)


async def decline_booking(
    db: AsyncSession,
    actor: Actor,
    booking_id: int,
    reason: str,
    expected_version: int = None,
    now: datetime = None,
) -> Booking:
    now = now or utcnow()
    booking = await _load_for_actor(db, actor, booking_id, expected_version)
    ensure_allowed(actor, booking, TransitionEvent.DECLINE)
    target = validate_transition(booking.status, TransitionEvent.DECLINE)
    reason = policies.require_text(reason, "Decline reason")

    booking, event = await compare_and_commit(
        db, booking,
        {"status": target, "decline_reason": reason},
        actor=actor, event_type=TransitionEvent.DECLINE, now=now,
    )
    return await finish_transition(db, booking, event)


async def submit_lesson_report(
    db: AsyncSession,
    actor: Actor,
    booking_id: int,
    topics_covered: str,
    homework: str = None,
    notes: str = None,
    expected_version: int = None,
    now: datetime = None,
) -> Booking:
    now = now or utcnow()
    booking = await _load_for_actor(db, actor, booking_id, expected_version)
    ensure_allowed(actor, booking, TransitionEvent.SUBMIT_REPORT)
    target = validate_transition(booking.status, TransitionEvent.SUBMIT_REPORT)

    if now < policies.session_ends_at(booking):
        raise InvalidBookingState("The lesson report can only be submitted after the session has ended")
    topics_covered = policies.require_text(topics_covered, "Topics covered")

    values = {
        "status": target,
        "report_topics_covered": topics_covered,
        "report_homework": (homework or "").strip() or None,
        "report_notes": (notes or "").strip() or None,
        "report_completed_at": now,
    }
    pending = []
    if booking.has_open_reschedule:
        pending.append(policies.close_reschedule(booking, RescheduleStatus.DECLINED, actor.id, now, "Booking completed"))
        values.update(policies.CLEARED_RESCHEDULE)

    booking, event = await compare_and_commit(
        db, booking, values, actor=actor, event_type=TransitionEvent.SUBMIT_REPORT, now=now, pending=pending,
    )
    return await finish_transition(db, booking, event)


# ==================== CANCELACIÓN ====================

async def cancel_booking(
    db: AsyncSession,
    actor: Actor,
    booking_id: int,
    reason: str = None,
    expected_version: int = None,
    now: datetime = None,
) -> Booking:
    now = now or utcnow()
    booking = await _load_for_actor(db, actor, booking_id, expected_version)
    target = validate_transition(booking.status, TransitionEvent.CANCEL)
    ensure_allowed(actor, booking, TransitionEvent.CANCEL)

    is_admin = actor.role == UserRole.ADMIN
    if booking.status == BookingStatus.CONFIRMED and not is_admin and now >= booking.scheduled_at:
        raise InvalidBookingState("A confirmed session can only be cancelled before it starts")
    if actor.role == UserRole.TUTOR:
        reason = policies.require_text(reason, "Cancellation reason")
    else:
        reason = (reason or "").strip() or None

    values = {"status": target, "cancel_reason": reason, "cancelled_by": actor.id}
    pending = []
    if booking.has_open_reschedule:
        pending.append(policies.close_reschedule(booking, RescheduleStatus.DECLINED, actor.id, now, "Booking cancelled"))
        values.update(policies.CLEARED_RESCHEDULE)

    booking, event = await compare_and_commit(
        db, booking, values, actor=actor, event_type=TransitionEvent.CANCEL, now=now, pending=pending,
    )
    return await finish_transition(db, booking, event)


# ==================== TRANSICIONES DEL SISTEMA ====================

async def apply_payment_succeeded(db: AsyncSession, booking: Booking, intent_id: str, now: datetime = None):
    """accepted -> confirmed. El commit incluye los cambios pendientes del Payment."""
    now = now or utcnow()
    target = validate_transition(booking.status, TransitionEvent.PAYMENT_SUCCEEDED)
    ensure_allowed(SYSTEM_ACTOR, booking, TransitionEvent.PAYMENT_SUCCEEDED)

    return await compare_and_commit(
        db, booking,
        {
            "status": target,
            "is_paid": True,
            "payment_intent_id": intent_id,
            "payment_error": None,
            "payment_failure_count": 0,
            "meeting_link": generate_secure_room_link(booking.id, booking.tutor_id, booking.student_id, booking.scheduled_at),
        },
        actor=SYSTEM_ACTOR, event_type=TransitionEvent.PAYMENT_SUCCEEDED, now=now,
    )


async def apply_payment_failed(db: AsyncSession, booking: Booking, error: str, now: datetime = None):
    """accepted -> pending, o cancelled al alcanzar el límite de fallos."""
    now = now or utcnow()
    failures = booking.payment_failure_count + 1
    if failures >= settings.MAX_PAYMENT_FAILURES:
        target = validate_transition(booking.status, TransitionEvent.PAYMENT_FAILED, BookingStatus.CANCELLED)
    else:
        target = validate_transition(booking.status, TransitionEvent.PAYMENT_FAILED, BookingStatus.PENDING)
    ensure_allowed(SYSTEM_ACTOR, booking, TransitionEvent.PAYMENT_FAILED)

    values = {
        "status": target,
        "payment_error": (error or "Payment failed")[:255],
        "payment_failure_count": failures,
        "accepted_at": None,
    }
    if target == BookingStatus.CANCELLED:
        values["cancel_reason"] = f"Payment failed {failures} time(s)"
        values["cancelled_by"] = SYSTEM_ACTOR.id

    logger.warning(f"⚠️ Pago fallido para la reserva {booking.id} ({failures}/{settings.MAX_PAYMENT_FAILURES}): {error}")
    return await compare_and_commit(
        db, booking, values, actor=SYSTEM_ACTOR, event_type=TransitionEvent.PAYMENT_FAILED, now=now,
    )


async def record_late_payment(db: AsyncSession, booking: Booking, intent_id: str, now: datetime = None) -> Booking:
    """Pago exitoso sobre una reserva que ya no está en accepted: se registra sin cambiar el estado."""
    logger.warning(f"⚠️ Pago tardío {intent_id} para la reserva {booking.id} en estado {booking.status}")
    booking, _ = await compare_and_commit(
        db, booking, {"is_paid": True, "payment_intent_id": intent_id, "payment_error": None}, now=now,
    )
    return booking


async def expire_hold(db: AsyncSession, booking: Booking, now: datetime = None):
    """accepted -> cancelled por vencimiento de la ventana de retención. No toca el Payment."""
    now = now or utcnow()
    target = validate_transition(booking.status, TransitionEvent.HOLD_EXPIRED)
    ensure_allowed(SYSTEM_ACTOR, booking, TransitionEvent.HOLD_EXPIRED)

    return await compare_and_commit(
        db, booking,
        {"status": target, "cancel_reason": "Payment hold window expired", "cancelled_by": SYSTEM_ACTOR.id},
        actor=SYSTEM_ACTOR, event_type=TransitionEvent.HOLD_EXPIRED, now=now,
    )


async def ensure_hold_active(db: AsyncSession, booking: Booking, now: datetime) -> Booking:
    """Si la retención venció, cancela la reserva y lanza ExpiredHold."""
    if not policies.hold_expired(booking, now):
        return booking
    booking, event = await expire_hold(db, booking, now)
    await finish_transition(db, booking, event)
    raise ExpiredHold(f"Payment hold for booking {booking.id} expired")


async def expire_holds(db: AsyncSession, now: datetime = None) -> int:
    """Barrido periódico de reservas aceptadas cuyo plazo de pago venció."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.HOLD_WINDOW_HOURS)
    result = await db.execute(
        select(Booking.id).where(
            Booking.status == BookingStatus.ACCEPTED.value,
            Booking.accepted_at <= cutoff,
        )
    )
    booking_ids = list(result.scalars().all())

    expired = 0
    for booking_id in booking_ids:
        booking = await get_booking(db, booking_id)
        if not policies.hold_expired(booking, now):
            continue
        try:
            booking, event = await expire_hold(db, booking, now)
        except StaleState:
            logger.info(f"La reserva {booking_id} cambió durante el barrido; se omite")
            continue
        await finish_transition(db, booking, event)
        expired += 1

    if expired:
        logger.info(f"⏰ Reservas canceladas por vencimiento de retención: {expired}")
    return expired
