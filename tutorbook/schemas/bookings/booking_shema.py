from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from tutorbook.models.common.educational_level import Level, Subject
from tutorbook.services.bookings.policies import MAX_DURATION, MIN_DURATION, hold_expires_at


# ==================== REQUESTS ====================

class BookingRequest(BaseModel):
    tutor_id: str
    # Obligatorio cuando reserva un padre en nombre de su hijo
    student_id: Optional[str] = None
    subject: Subject
    level: Level
    scheduled_at: datetime
    duration: int = Field(60, ge=MIN_DURATION, le=MAX_DURATION)


class DeclineBookingRequest(BaseModel):
    reason: str = Field(..., min_length=10)


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = None


class LessonReportRequest(BaseModel):
    topics_covered: str = Field(..., min_length=10)
    homework: Optional[str] = None
    notes: Optional[str] = None


# ==================== REPRESENTACIÓN ====================

class LessonReport(BaseModel):
    topics_covered: str
    homework: Optional[str] = None
    notes: Optional[str] = None
    completed_at: datetime


class OpenRescheduleRequest(BaseModel):
    requested_by: str
    requester_role: str
    new_time: datetime
    requested_at: datetime


class _BookingBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    student_id: str
    tutor_id: str
    subject: str
    level: str
    scheduled_at: datetime
    duration: int
    price: int
    currency: str
    is_paid: bool
    version: int
    created_at: datetime
    updated_at: datetime


class PendingBooking(_BookingBase):
    status: Literal["pending"]
    payment_error: Optional[str] = None
    payment_failure_count: int = 0


class AcceptedBooking(_BookingBase):
    status: Literal["accepted"]
    accepted_at: datetime
    hold_expires_at: datetime


class ConfirmedBooking(_BookingBase):
    status: Literal["confirmed"]
    payment_intent_id: str
    meeting_link: Optional[str] = None
    reschedule_request: Optional[OpenRescheduleRequest] = None


class CompletedBooking(_BookingBase):
    status: Literal["completed"]
    payment_intent_id: Optional[str] = None
    meeting_link: Optional[str] = None
    lesson_report: LessonReport


class CancelledBooking(_BookingBase):
    status: Literal["cancelled"]
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    payment_error: Optional[str] = None


class DeclinedBooking(_BookingBase):
    status: Literal["declined"]
    decline_reason: str


BookingView = Annotated[
    Union[PendingBooking, AcceptedBooking, ConfirmedBooking, CompletedBooking, CancelledBooking, DeclinedBooking],
    Field(discriminator="status"),
]

_booking_adapter = TypeAdapter(BookingView)


def to_booking_view(booking):
    """Construye la variante que corresponde al estado actual de la reserva."""
    data = {
        "id": booking.id,
        "student_id": booking.student_id,
        "tutor_id": booking.tutor_id,
        "subject": booking.subject,
        "level": booking.level,
        "scheduled_at": booking.scheduled_at,
        "duration": booking.duration,
        "price": booking.price,
        "currency": booking.currency,
        "is_paid": booking.is_paid,
        "version": booking.version,
        "created_at": booking.created_at,
        "updated_at": booking.updated_at,
        "status": booking.status,
    }

    if booking.status == "pending":
        data["payment_error"] = booking.payment_error
        data["payment_failure_count"] = booking.payment_failure_count
    elif booking.status == "accepted":
        data["accepted_at"] = booking.accepted_at
        data["hold_expires_at"] = hold_expires_at(booking)
    elif booking.status == "confirmed":
        data["payment_intent_id"] = booking.payment_intent_id
        data["meeting_link"] = booking.meeting_link
        if booking.has_open_reschedule:
            data["reschedule_request"] = {
                "requested_by": booking.reschedule_requested_by,
                "requester_role": booking.reschedule_requester_role,
                "new_time": booking.reschedule_new_time,
                "requested_at": booking.reschedule_requested_at,
            }
    elif booking.status == "completed":
        data["payment_intent_id"] = booking.payment_intent_id
        data["meeting_link"] = booking.meeting_link
        data["lesson_report"] = {
            "topics_covered": booking.report_topics_covered,
            "homework": booking.report_homework,
            "notes": booking.report_notes,
            "completed_at": booking.report_completed_at,
        }
    elif booking.status == "cancelled":
        data["cancel_reason"] = booking.cancel_reason
        data["cancelled_by"] = booking.cancelled_by
        data["payment_error"] = booking.payment_error
    elif booking.status == "declined":
        data["decline_reason"] = booking.decline_reason

    return _booking_adapter.validate_python(data)


class BookingResponse(BaseModel):
    success: bool
    message: str
    data: BookingView


class BookingListResponse(BaseModel):
    success: bool
    message: str
    data: List[BookingView]
