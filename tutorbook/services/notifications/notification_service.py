from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from tutorbook.cores.exceptions import NotFound
from tutorbook.models.booking.booking_event import BookingEvent
from tutorbook.models.booking.bookings import Booking
from tutorbook.models.notifications.notifications import Notification
from tutorbook.models.notifications.user_notifications import UserNotification
from tutorbook.models.users.user import User

logger = logging.getLogger(__name__)


# Plantilla por tipo de evento: (título, mensaje)
TEMPLATES = {
    "create": ("New booking request", "A new tutoring session has been requested."),
    "accept": ("Booking accepted", "Your tutor accepted the session. Complete the payment to confirm it."),
    "decline": ("Booking declined", "The tutor declined the session request."),
    "cancel": ("Booking cancelled", "A tutoring session has been cancelled."),
    "payment_succeeded": ("Booking confirmed", "Payment received. Your session is confirmed."),
    "payment_failed": ("Payment failed", "The payment for a session could not be completed."),
    "hold_expired": ("Booking expired", "The session was cancelled because payment was not completed in time."),
    "submit_report": ("Lesson completed", "The tutor submitted the lesson report."),
    "reschedule_proposed": ("Reschedule requested", "A new time has been proposed for your session."),
    "reschedule_approved": ("Reschedule approved", "Your session has been moved to the new time."),
    "reschedule_declined": ("Reschedule declined", "The proposed new time was declined."),
}


async def _get_or_create_notification(db: AsyncSession, event_type: str) -> Notification:
    result = await db.execute(select(Notification).where(Notification.type == event_type).limit(1))
    notification = result.scalar_one_or_none()
    if not notification:
        title, message = TEMPLATES.get(event_type, ("Booking updated", "A tutoring session was updated."))
        notification = Notification(title=title, message=message, type=event_type)
        db.add(notification)
        await db.flush()
    return notification


async def _recipients(db: AsyncSession, booking: Booking, actor_id: str) -> list:
    """Estudiante, su padre (si existe) y tutor, sin incluir a quien originó el evento."""
    result = await db.execute(select(User.parent_id).where(User.id == booking.student_id))
    parent_id = result.scalar_one_or_none()

    recipients = []
    for user_id in (booking.student_id, parent_id, booking.tutor_id):
        if user_id and user_id != actor_id and user_id not in recipients:
            recipients.append(user_id)
    return recipients


async def notify_booking_event(db: AsyncSession, event: BookingEvent) -> int:
    """
    Consumidor de eventos de reserva.
    Idempotente: una notificación por (evento, usuario); la reentrega no duplica.
    El commit lo realiza quien despacha el evento.
    """
    result = await db.execute(select(Booking).where(Booking.id == event.booking_id))
    booking = result.scalar_one()

    notification = await _get_or_create_notification(db, event.event_type)

    created = 0
    for user_id in await _recipients(db, booking, event.actor_id):
        existing = await db.execute(
            select(UserNotification.id).where(
                UserNotification.event_id == event.id,
                UserNotification.user_id == user_id,
            )
        )
        if existing.scalar_one_or_none():
            continue
        db.add(UserNotification(
            notification_id=notification.id,
            user_id=user_id,
            booking_id=booking.id,
            event_id=event.id,
            is_read=False,
        ))
        created += 1

    logger.info(f"✅ {created} notificación(es) '{event.event_type}' para la reserva {booking.id}")
    return created


async def get_user_notifications(db: AsyncSession, user_id: str, limit: int = 50) -> list:
    result = await db.execute(
        select(UserNotification, Notification)
        .join(Notification, Notification.id == UserNotification.notification_id)
        .where(UserNotification.user_id == user_id)
        .order_by(UserNotification.id.desc())
        .limit(limit)
    )
    return [
        {
            "id": user_notification.id,
            "title": notification.title,
            "message": notification.message,
            "type": notification.type,
            "booking_id": user_notification.booking_id,
            "event_id": user_notification.event_id,
            "is_read": user_notification.is_read,
        }
        for user_notification, notification in result.all()
    ]


async def mark_notification_as_read(db: AsyncSession, user_id: str, user_notification_id: int) -> bool:
    result = await db.execute(
        select(UserNotification).where(
            UserNotification.id == user_notification_id,
            UserNotification.user_id == user_id,
        )
    )
    user_notification = result.scalar_one_or_none()
    if not user_notification:
        raise NotFound("Notification not found")
    user_notification.is_read = True
    await db.commit()
    return True
