"""
Reglas de negocio de reservas que no dependen de la base de datos:
ventanas de agenda, ventana de retención y textos mínimos.
"""

from datetime import datetime, timedelta, timezone

from tutorbook.configs.settings import settings
from tutorbook.cores.exceptions import ValidationError
from tutorbook.models.booking.reschedule_request import RescheduleRequest
from tutorbook.models.common.status import BookingStatus, RescheduleStatus

MIN_DURATION = 15
MAX_DURATION = 300
MIN_REASON_LENGTH = 10


def as_utc(value: datetime) -> datetime:
    # Las fechas sin zona se interpretan como UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_schedule(scheduled_at: datetime, now: datetime) -> datetime:
    if not isinstance(scheduled_at, datetime):
        raise ValidationError("Scheduled time must be a valid datetime")
    scheduled_at = as_utc(scheduled_at)

    earliest = now + timedelta(hours=settings.MIN_LEAD_HOURS)
    latest = now + timedelta(days=settings.MAX_LEAD_DAYS)
    if scheduled_at < earliest:
        raise ValidationError(
            f"Sessions must be booked at least {settings.MIN_LEAD_HOURS:g} hour(s) in advance"
        )
    if scheduled_at > latest:
        raise ValidationError(f"Sessions cannot be booked more than {settings.MAX_LEAD_DAYS} days ahead")
    return scheduled_at


def validate_duration(duration: int) -> int:
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError("Duration must be a whole number of minutes")
    if duration < MIN_DURATION or duration > MAX_DURATION:
        raise ValidationError(f"Duration must be between {MIN_DURATION} and {MAX_DURATION} minutes")
    return duration


def compute_price(hourly_rate: int, duration: int) -> int:
    return hourly_rate * duration // 60


def require_text(value, field_name: str, min_length: int = MIN_REASON_LENGTH) -> str:
    text = (value or "").strip()
    if len(text) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")
    return text


def hold_expires_at(booking):
    if booking.accepted_at is None:
        return None
    return booking.accepted_at + timedelta(hours=settings.HOLD_WINDOW_HOURS)


def hold_expired(booking, now: datetime) -> bool:
    expires_at = hold_expires_at(booking)
    return (
        booking.status == BookingStatus.ACCEPTED
        and expires_at is not None
        and expires_at <= now
    )


def session_ends_at(booking) -> datetime:
    return booking.scheduled_at + timedelta(minutes=booking.duration)


CLEARED_RESCHEDULE = {
    "reschedule_requested_by": None,
    "reschedule_requester_role": None,
    "reschedule_new_time": None,
    "reschedule_requested_at": None,
}


def close_reschedule(booking, status: RescheduleStatus, responded_by: str, now: datetime, reason: str = None):
    """Fila de auditoría para la solicitud abierta de la reserva."""
    return RescheduleRequest(
        booking_id=booking.id,
        requested_by=booking.reschedule_requested_by,
        requester_role=booking.reschedule_requester_role,
        requested_at=booking.reschedule_requested_at,
        previous_time=booking.scheduled_at,
        new_time=booking.reschedule_new_time,
        status=status.value,
        responded_by=responded_by,
        responded_at=now,
        decline_reason=reason,
    )
