from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.apis.deps import get_current_actor, get_db, get_payment_gateway, if_match_version
from tutorbook.cores.security import Actor
from tutorbook.schemas.bookings.booking_shema import (
    BookingListResponse,
    BookingRequest,
    BookingResponse,
    CancelBookingRequest,
    DeclineBookingRequest,
    LessonReportRequest,
    to_booking_view,
)
from tutorbook.schemas.bookings.reschedule_request_schema import (
    RescheduleProposalRequest,
    RescheduleResponseRequest,
)
from tutorbook.services.bookings.booking_service import (
    accept_booking,
    cancel_booking,
    create_booking,
    decline_booking,
    get_booking_for_actor,
    list_bookings,
    submit_lesson_report,
)
from tutorbook.services.bookings.reschedule_service import propose_reschedule, respond_reschedule
from tutorbook.services.payments.payment_service import refund_closed_booking

router = APIRouter()


def _response(booking, message: str) -> dict:
    return {
        "success": True,
        "message": message,
        "data": to_booking_view(booking).model_dump(),
    }


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def crear_booking(
    request: BookingRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    booking = await create_booking(
        db,
        actor,
        tutor_id=request.tutor_id,
        student_id=request.student_id,
        subject=request.subject,
        level=request.level,
        scheduled_at=request.scheduled_at,
        duration=request.duration,
    )
    return _response(booking, "Booking requested successfully")


@router.get("/", response_model=BookingListResponse)
async def listar_bookings(
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    bookings = await list_bookings(db, actor, status=status)
    return {
        "success": True,
        "message": "Bookings retrieved successfully",
        "data": [to_booking_view(booking).model_dump() for booking in bookings],
    }


@router.get("/{booking_id}", response_model=BookingResponse)
async def obtener_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    booking = await get_booking_for_actor(db, actor, booking_id)
    return _response(booking, "Booking retrieved successfully")


@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def aceptar_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    expected_version: Optional[int] = Depends(if_match_version),
):
    booking = await accept_booking(db, actor, booking_id, expected_version=expected_version)
    return _response(booking, "Booking accepted")


@router.post("/{booking_id}/decline", response_model=BookingResponse)
async def rechazar_booking(
    booking_id: int,
    request: DeclineBookingRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    expected_version: Optional[int] = Depends(if_match_version),
    gateway=Depends(get_payment_gateway),
):
    booking = await decline_booking(db, actor, booking_id, request.reason, expected_version=expected_version)
    if booking.is_paid:
        await refund_closed_booking(db, booking, gateway)
        booking = await get_booking_for_actor(db, actor, booking_id)
    return _response(booking, "Booking declined")


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancelar_booking(
    booking_id: int,
    request: Optional[CancelBookingRequest] = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    expected_version: Optional[int] = Depends(if_match_version),
    gateway=Depends(get_payment_gateway),
):
    reason = request.reason if request else None
    booking = await cancel_booking(db, actor, booking_id, reason=reason, expected_version=expected_version)
    # Los reembolsos fallidos quedan registrados para reintento del administrador
    if booking.is_paid:
        await refund_closed_booking(db, booking, gateway)
        booking = await get_booking_for_actor(db, actor, booking_id)
    return _response(booking, "Booking cancelled")


@router.post("/{booking_id}/lesson-report", response_model=BookingResponse)
async def reporte_clase(
    booking_id: int,
    request: LessonReportRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    expected_version: Optional[int] = Depends(if_match_version),
):
    booking = await submit_lesson_report(
        db,
        actor,
        booking_id,
        topics_covered=request.topics_covered,
        homework=request.homework,
        notes=request.notes,
        expected_version=expected_version,
    )
    return _response(booking, "Lesson report submitted")


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def solicitar_reagendado(
    booking_id: int,
    request: RescheduleProposalRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    expected_version: Optional[int] = Depends(if_match_version),
):
    booking = await propose_reschedule(
        db, actor, booking_id, request.new_scheduled_at, expected_version=expected_version
    )
    return _response(booking, "Reschedule requested")


@router.post("/{booking_id}/reschedule/respond", response_model=BookingResponse)
async def responder_reagendado(
    booking_id: int,
    request: RescheduleResponseRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    expected_version: Optional[int] = Depends(if_match_version),
):
    booking = await respond_reschedule(
        db, actor, booking_id, request.approve, reason=request.reason, expected_version=expected_version
    )
    return _response(booking, "Reschedule approved" if request.approve else "Reschedule declined")
