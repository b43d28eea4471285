"""
Negociación de reagendado sobre una reserva confirmada.

La solicitud abierta vive en la propia reserva, de modo que proponer y
responder usan el mismo compare-and-commit que el resto de transiciones:
dos propuestas concurrentes nunca quedan abiertas a la vez.
"""

import logging
from datetime import datetime

from tutorbook.cores.db import utcnow
from tutorbook.cores.exceptions import (
    InvalidTransition,
    RescheduleAlreadyPending,
    ValidationError,
)
from tutorbook.cores.security import Actor
from tutorbook.models.common.status import BookingStatus, RescheduleStatus
from tutorbook.services.bookings import policies
from tutorbook.services.bookings.authorization_service import ensure_allowed, ensure_can_view
from tutorbook.services.bookings.booking_service import finish_transition
from tutorbook.services.bookings.booking_store import check_expected_version, compare_and_commit, get_booking
from tutorbook.services.bookings.room_service import generate_secure_room_link
from tutorbook.services.bookings.state_machine import TransitionEvent, validate_transition

logger = logging.getLogger(__name__)


async def _load_confirmed(db, actor: Actor, booking_id: int, expected_version: int):
    booking = await get_booking(db, booking_id)
    check_expected_version(booking, expected_version)
    ensure_can_view(actor, booking)
    if booking.status != BookingStatus.CONFIRMED:
        raise InvalidTransition(f"Reschedules are only possible for confirmed bookings (status '{booking.status}')")
    return booking


async def propose_reschedule(
    db,
    actor: Actor,
    booking_id: int,
    new_time: datetime,
    expected_version: int = None,
    now: datetime = None,
):
    now = now or utcnow()
    booking = await _load_confirmed(db, actor, booking_id, expected_version)
    ensure_allowed(actor, booking, TransitionEvent.PROPOSE_RESCHEDULE)
    if booking.has_open_reschedule:
        raise RescheduleAlreadyPending("A reschedule request is already pending for this booking")

    new_time = policies.validate_schedule(new_time, now)
    if new_time == booking.scheduled_at:
        raise ValidationError("The proposed time is the same as the current one")

    booking, event = await compare_and_commit(
        db, booking,
        {
            "reschedule_requested_by": actor.id,
            "reschedule_requester_role": actor.role,
            "reschedule_new_time": new_time,
            "reschedule_requested_at": now,
        },
        actor=actor, event_type="reschedule_proposed", now=now,
    )
    logger.info(f"📅 Reagendado propuesto para la reserva {booking.id} por {actor.role.value}: {new_time.isoformat()}")
    return await finish_transition(db, booking, event)


async def respond_reschedule(
    db,
    actor: Actor,
    booking_id: int,
    approve: bool,
    reason: str = None,
    expected_version: int = None,
    now: datetime = None,
):
    now = now or utcnow()
    booking = await _load_confirmed(db, actor, booking_id, expected_version)
    if not booking.has_open_reschedule:
        raise InvalidTransition("There is no pending reschedule request for this booking")
    ensure_allowed(actor, booking, TransitionEvent.RESPOND_RESCHEDULE)

    values = dict(policies.CLEARED_RESCHEDULE)

    if approve:
        validate_transition(booking.status, TransitionEvent.RESCHEDULE_APPROVED)
        ensure_allowed(actor, booking, TransitionEvent.RESCHEDULE_APPROVED)
        new_time = booking.reschedule_new_time
        if new_time <= now:
            raise ValidationError("The proposed time has already passed")

        audit = policies.close_reschedule(booking, RescheduleStatus.APPROVED, actor.id, now)
        values["scheduled_at"] = new_time
        values["meeting_link"] = generate_secure_room_link(booking.id, booking.tutor_id, booking.student_id, new_time)
        event_type = TransitionEvent.RESCHEDULE_APPROVED
    else:
        reason = policies.require_text(reason, "Decline reason", min_length=1)
        audit = policies.close_reschedule(booking, RescheduleStatus.DECLINED, actor.id, now, reason)
        event_type = "reschedule_declined"

    booking, event = await compare_and_commit(
        db, booking, values, actor=actor, event_type=event_type, now=now, pending=[audit],
    )
    logger.info(f"📅 Reagendado de la reserva {booking.id} {'aprobado' if approve else 'rechazado'} por {actor.id}")
    return await finish_transition(db, booking, event)
