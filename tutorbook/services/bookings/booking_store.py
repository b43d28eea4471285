"""
Acceso a la reserva como registro durable.

Toda escritura sobre `bookings` pasa por `compare_and_commit`: el UPDATE solo
aplica si la versión y el estado leídos siguen vigentes. El evento de ciclo de
vida y cualquier fila pendiente en la sesión se confirman en el mismo commit.
"""

import asyncio
import enum
import logging
import weakref
from datetime import datetime
from typing import Optional, Tuple, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.cores.db import utcnow
from tutorbook.cores.exceptions import NotFound, StaleState
from tutorbook.cores.security import Actor
from tutorbook.models.booking.bookings import Booking
from tutorbook.models.booking.booking_event import BookingEvent

logger = logging.getLogger(__name__)

# Un diccionario de locks por event loop: un asyncio.Lock no puede compartirse entre loops.
# Los locks se liberan solos cuando ninguna tarea los usa ni los espera.
_locks = weakref.WeakKeyDictionary()


def booking_lock(booking_id: int) -> asyncio.Lock:
    """Serializa dentro del proceso las escrituras sobre una misma reserva."""
    loop = asyncio.get_running_loop()
    locks = _locks.setdefault(loop, weakref.WeakValueDictionary())
    lock = locks.get(booking_id)
    if lock is None:
        lock = locks[booking_id] = asyncio.Lock()
    return lock


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    return booking


def check_expected_version(booking: Booking, expected_version: Optional[int]):
    if expected_version is not None and booking.version != expected_version:
        raise StaleState(
            f"Booking {booking.id} changed since version {expected_version} (current {booking.version}); refresh and retry"
        )


def _plain(value):
    return value.value if isinstance(value, enum.Enum) else value


async def compare_and_commit(
    db: AsyncSession,
    booking: Booking,
    values: dict,
    actor: Actor = None,
    event_type: str = None,
    now: datetime = None,
    pending: Iterable = (),
) -> Tuple[Booking, Optional[BookingEvent]]:
    """
    Aplica `values` a la reserva si nadie la modificó desde que se leyó.

    Devuelve la reserva recargada y el BookingEvent insertado (si se pidió uno).
    Si la versión o el estado cambiaron, hace rollback y lanza StaleState.
    """
    now = now or utcnow()
    seen_version = booking.version
    seen_status = booking.status
    booking_id = booking.id

    values = {key: _plain(value) for key, value in values.items()}
    values["version"] = Booking.version + 1
    values["updated_at"] = now

    for obj in pending:
        db.add(obj)

    event = None
    if event_type is not None:
        event = BookingEvent(
            booking_id=booking_id,
            event_type=_plain(event_type),
            from_status=seen_status,
            to_status=values.get("status", seen_status),
            actor_id=actor.id,
            actor_role=actor.role.value,
            occurred_at=now,
        )
        db.add(event)

    async with booking_lock(booking_id):
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.version == seen_version,
                Booking.status == seen_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            logger.warning(f"⚠️ Conflicto de concurrencia en la reserva {booking_id} (versión {seen_version})")
            raise StaleState(f"Booking {booking_id} was modified concurrently; refresh and retry")
        await db.commit()

    booking = await get_booking(db, booking_id)
    if event is not None:
        logger.info(
            f"✅ Reserva {booking_id}: {event.from_status} -> {event.to_status} ({event.event_type}) por {event.actor_role} {event.actor_id}"
        )
    return booking, event
