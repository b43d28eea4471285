"""
Despacho de eventos de ciclo de vida (outbox).

Los eventos se insertan junto con la transición; aquí se entregan a los
consumidores registrados después del commit. Un fallo de un consumidor no
deshace la transición: queda registrado en el evento y se reintenta con
`dispatch_pending_events` (entrega al menos una vez).
"""

import logging
from typing import Awaitable, Callable, Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.cores.db import utcnow
from tutorbook.models.booking.booking_event import BookingEvent
from tutorbook.services.notifications.notification_service import notify_booking_event

logger = logging.getLogger(__name__)

EventSink = Callable[[AsyncSession, BookingEvent], Awaitable[object]]

_sinks: List[EventSink] = [notify_booking_event]


def register_sink(sink: EventSink):
    if sink not in _sinks:
        _sinks.append(sink)


def unregister_sink(sink: EventSink):
    if sink in _sinks:
        _sinks.remove(sink)


async def _get_event(db: AsyncSession, event_id: int) -> BookingEvent:
    result = await db.execute(
        select(BookingEvent)
        .where(BookingEvent.id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def deliver_event(db: AsyncSession, event_id: int) -> bool:
    event = await _get_event(db, event_id)
    try:
        for sink in list(_sinks):
            await sink(db, event)
    except Exception as e:
        await db.rollback()
        event = await _get_event(db, event_id)
        event.attempt_count += 1
        event.last_error = str(e)[:500]
        await db.commit()
        logger.error(f"❌ Error entregando el evento {event_id} ({event.event_type}): {str(e)}")
        return False

    event.attempt_count += 1
    event.dispatched_at = utcnow()
    event.last_error = None
    await db.commit()
    return True


async def dispatch_events(db: AsyncSession, events: Iterable[BookingEvent]) -> int:
    delivered = 0
    for event in events:
        if event is None:
            continue
        if await deliver_event(db, event.id):
            delivered += 1
    return delivered


async def dispatch_pending_events(db: AsyncSession, limit: int = 100) -> int:
    """Reentrega los eventos que aún no llegaron a todos los consumidores."""
    result = await db.execute(
        select(BookingEvent.id)
        .where(BookingEvent.dispatched_at.is_(None))
        .order_by(BookingEvent.id)
        .limit(limit)
    )
    event_ids = list(result.scalars().all())

    delivered = 0
    for event_id in event_ids:
        if await deliver_event(db, event_id):
            delivered += 1

    if event_ids:
        logger.info(f"📬 Eventos pendientes reentregados: {delivered}/{len(event_ids)}")
    return delivered


async def get_booking_events(db: AsyncSession, booking_id: int) -> list:
    result = await db.execute(
        select(BookingEvent)
        .where(BookingEvent.booking_id == booking_id)
        .order_by(BookingEvent.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
