"""
Guard de permisos por evento.

Función pura sobre (actor, reserva, evento). Las reglas de estado viven en
`state_machine`; aquí solo se decide quién puede intentar cada acción.
"""

from tutorbook.cores.exceptions import Unauthorized
from tutorbook.cores.security import Actor
from tutorbook.models.common.role import UserRole, REQUESTER_ROLES
from tutorbook.models.common.status import BookingStatus
from tutorbook.services.bookings.state_machine import TransitionEvent, is_terminal


def is_admin(actor: Actor) -> bool:
    return actor.role == UserRole.ADMIN


def is_system(actor: Actor) -> bool:
    return actor.role == UserRole.SYSTEM


def is_tutor(actor: Actor, booking) -> bool:
    return actor.role == UserRole.TUTOR and actor.id == booking.tutor_id


def is_requester(actor: Actor, booking) -> bool:
    """El estudiante de la reserva o uno de sus padres."""
    if actor.role == UserRole.STUDENT:
        return actor.id == booking.student_id
    if actor.role == UserRole.PARENT:
        return booking.student_id in actor.children_ids
    return False


def can_view(actor: Actor, booking) -> bool:
    return (
        is_admin(actor)
        or is_system(actor)
        or is_tutor(actor, booking)
        or is_requester(actor, booking)
    )


def _can_cancel(actor: Actor, booking) -> bool:
    if is_terminal(booking.status):
        return False
    if is_admin(actor):
        return True
    status = BookingStatus(booking.status)
    # Una reserva aceptada solo la cancela el administrador (o la expiración)
    if is_requester(actor, booking):
        return status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)
    if is_tutor(actor, booking):
        return status == BookingStatus.CONFIRMED
    return False


def _is_counterparty(actor: Actor, booking) -> bool:
    """Responde quien está del lado opuesto a quien propuso el reagendado."""
    proposer_role = booking.reschedule_requester_role
    if proposer_role is None:
        return False
    if UserRole(proposer_role) == UserRole.TUTOR:
        return is_requester(actor, booking)
    return is_tutor(actor, booking)


def is_allowed(actor: Actor, booking, event) -> bool:
    event = TransitionEvent(event)

    if event == TransitionEvent.VIEW:
        return can_view(actor, booking)
    if event == TransitionEvent.CREATE:
        return actor.role in REQUESTER_ROLES and is_requester(actor, booking)
    if event in (TransitionEvent.ACCEPT, TransitionEvent.DECLINE, TransitionEvent.SUBMIT_REPORT):
        return is_tutor(actor, booking)
    if event == TransitionEvent.CANCEL:
        return _can_cancel(actor, booking)
    if event == TransitionEvent.INITIATE_PAYMENT:
        return is_requester(actor, booking) or is_admin(actor)
    if event == TransitionEvent.PROPOSE_RESCHEDULE:
        return is_requester(actor, booking) or is_tutor(actor, booking)
    if event in (TransitionEvent.RESPOND_RESCHEDULE, TransitionEvent.RESCHEDULE_APPROVED):
        return _is_counterparty(actor, booking)
    if event == TransitionEvent.REFUND:
        return is_admin(actor) or is_system(actor)
    if event in (TransitionEvent.PAYMENT_SUCCEEDED, TransitionEvent.PAYMENT_FAILED, TransitionEvent.HOLD_EXPIRED):
        return is_system(actor)
    return False


def ensure_can_view(actor: Actor, booking):
    if not can_view(actor, booking):
        raise Unauthorized("You do not have access to this booking")


def ensure_allowed(actor: Actor, booking, event):
    if not is_allowed(actor, booking, event):
        event = TransitionEvent(event)
        raise Unauthorized(f"Role '{actor.role.value}' is not allowed to '{event.value}' this booking")
