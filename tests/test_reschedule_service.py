from datetime import timedelta

import pytest
from sqlalchemy import select

from tutorbook.cores.exceptions import (
    InvalidTransition,
    RescheduleAlreadyPending,
    StaleState,
    Unauthorized,
    ValidationError,
)
from tutorbook.models.booking.reschedule_request import RescheduleRequest
from tutorbook.services.bookings.booking_service import accept_booking, cancel_booking
from tutorbook.services.bookings.booking_store import get_booking
from tutorbook.services.bookings.reschedule_service import propose_reschedule, respond_reschedule
from tutorbook.services.events.event_service import get_booking_events


async def _audit_rows(db, booking_id):
    result = await db.execute(
        select(RescheduleRequest)
        .where(RescheduleRequest.booking_id == booking_id)
        .order_by(RescheduleRequest.id)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_student_proposes_and_tutor_approves(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    original = await get_booking(db, booking_id)
    new_time = now + timedelta(hours=5)

    booking = await propose_reschedule(db, users.student, booking_id, new_time, now=now)
    assert booking.has_open_reschedule
    assert booking.reschedule_new_time == new_time
    assert booking.reschedule_requester_role == "student"

    with pytest.raises(RescheduleAlreadyPending):
        await propose_reschedule(db, users.tutor, booking_id, now + timedelta(hours=8), now=now)

    booking = await respond_reschedule(db, users.tutor, booking_id, approve=True, now=now)
    assert booking.status == "confirmed"
    assert booking.scheduled_at == new_time
    assert not booking.has_open_reschedule
    assert booking.reschedule_new_time is None
    assert booking.meeting_link and booking.meeting_link != original.meeting_link

    [audit] = await _audit_rows(db, booking_id)
    assert audit.status == "approved"
    assert audit.previous_time == original.scheduled_at
    assert audit.new_time == new_time
    assert audit.requested_by == "student-1"
    assert audit.responded_by == "tutor-1"

    events = [(e.event_type, e.from_status, e.to_status) for e in await get_booking_events(db, booking_id)]
    assert events[-2:] == [
        ("reschedule_proposed", "confirmed", "confirmed"),
        ("reschedule_approved", "confirmed", "confirmed"),
    ]


@pytest.mark.asyncio
async def test_tutor_proposes_and_parent_declines(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    original = await get_booking(db, booking_id)

    await propose_reschedule(db, users.tutor, booking_id, now + timedelta(days=2), now=now)

    with pytest.raises(ValidationError):
        await respond_reschedule(db, users.parent, booking_id, approve=False, now=now)

    booking = await respond_reschedule(
        db, users.parent, booking_id, approve=False, reason="We are away that weekend", now=now,
    )
    assert booking.scheduled_at == original.scheduled_at
    assert not booking.has_open_reschedule

    [audit] = await _audit_rows(db, booking_id)
    assert audit.status == "declined"
    assert audit.decline_reason == "We are away that weekend"
    assert audit.responded_by == "parent-1"
    assert (await get_booking_events(db, booking_id))[-1].event_type == "reschedule_declined"


@pytest.mark.asyncio
async def test_proposer_cannot_answer_own_request(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    await propose_reschedule(db, users.student, booking_id, now + timedelta(hours=6), now=now)

    with pytest.raises(Unauthorized):
        await respond_reschedule(db, users.student, booking_id, approve=True, now=now)
    # El padre está del mismo lado que el estudiante
    with pytest.raises(Unauthorized):
        await respond_reschedule(db, users.parent, booking_id, approve=True, now=now)


@pytest.mark.asyncio
async def test_outsiders_cannot_propose(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    with pytest.raises(Unauthorized):
        await propose_reschedule(db, users.other_tutor, booking_id, now + timedelta(hours=6), now=now)
    with pytest.raises(Unauthorized):
        await propose_reschedule(db, users.admin, booking_id, now + timedelta(hours=6), now=now)


@pytest.mark.asyncio
async def test_reschedule_requires_confirmed_booking(db, users, make_booking, now):
    booking = await make_booking()
    with pytest.raises(InvalidTransition):
        await propose_reschedule(db, users.student, booking.id, now + timedelta(hours=6), now=now)

    await accept_booking(db, users.tutor, booking.id, now=now)
    with pytest.raises(InvalidTransition):
        await propose_reschedule(db, users.student, booking.id, now + timedelta(hours=6), now=now)


@pytest.mark.asyncio
async def test_respond_without_open_request(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    with pytest.raises(InvalidTransition):
        await respond_reschedule(db, users.tutor, booking_id, approve=True, now=now)


@pytest.mark.asyncio
@pytest.mark.parametrize("offset", [timedelta(minutes=20), timedelta(days=400), timedelta(hours=2)])
async def test_proposed_time_is_validated(db, users, make_confirmed_booking, now, offset):
    # +2h coincide con el horario actual de la reserva
    booking_id, _ = await make_confirmed_booking(hours_ahead=2)
    with pytest.raises(ValidationError):
        await propose_reschedule(db, users.student, booking_id, now + offset, now=now)


@pytest.mark.asyncio
async def test_approval_after_proposed_time_passed(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking(hours_ahead=48)
    await propose_reschedule(db, users.student, booking_id, now + timedelta(hours=3), now=now)

    with pytest.raises(ValidationError):
        await respond_reschedule(db, users.tutor, booking_id, approve=True, now=now + timedelta(hours=4))


@pytest.mark.asyncio
async def test_cancellation_closes_open_request(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    await propose_reschedule(db, users.tutor, booking_id, now + timedelta(hours=6), now=now)

    booking = await cancel_booking(db, users.student, booking_id, now=now)
    assert booking.status == "cancelled"
    assert not booking.has_open_reschedule

    [audit] = await _audit_rows(db, booking_id)
    assert audit.status == "declined"
    assert audit.decline_reason == "Booking cancelled"


@pytest.mark.asyncio
async def test_stale_version_on_respond(db, users, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    booking = await propose_reschedule(db, users.student, booking_id, now + timedelta(hours=6), now=now)

    with pytest.raises(StaleState):
        await respond_reschedule(
            db, users.tutor, booking_id, approve=True, expected_version=booking.version - 1, now=now,
        )
