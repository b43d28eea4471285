"""
Tabla de transiciones del ciclo de vida de una reserva.

Módulo puro: no toca la base de datos ni conoce al actor. Responde únicamente
si un evento es válido para un estado y a qué estados puede llevar.
"""

import enum
from typing import FrozenSet

from tutorbook.cores.exceptions import InvalidTransition
from tutorbook.models.common.status import BookingStatus, TERMINAL_STATUSES


class TransitionEvent(str, enum.Enum):
    CREATE = "create"
    ACCEPT = "accept"
    DECLINE = "decline"
    CANCEL = "cancel"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    HOLD_EXPIRED = "hold_expired"
    SUBMIT_REPORT = "submit_report"
    RESCHEDULE_APPROVED = "reschedule_approved"

    # Acciones que solo pasan por el guard de permisos; no cambian el estado
    INITIATE_PAYMENT = "initiate_payment"
    PROPOSE_RESCHEDULE = "propose_reschedule"
    RESPOND_RESCHEDULE = "respond_reschedule"
    REFUND = "refund"
    VIEW = "view"


S = BookingStatus
E = TransitionEvent

TRANSITIONS = {
    (S.PENDING, E.ACCEPT): frozenset({S.ACCEPTED}),
    (S.PENDING, E.DECLINE): frozenset({S.DECLINED}),
    (S.PENDING, E.CANCEL): frozenset({S.CANCELLED}),

    (S.ACCEPTED, E.PAYMENT_SUCCEEDED): frozenset({S.CONFIRMED}),
    # Vuelve a pending o se cancela según el número de fallos acumulados
    (S.ACCEPTED, E.PAYMENT_FAILED): frozenset({S.PENDING, S.CANCELLED}),
    (S.ACCEPTED, E.HOLD_EXPIRED): frozenset({S.CANCELLED}),
    (S.ACCEPTED, E.CANCEL): frozenset({S.CANCELLED}),

    (S.CONFIRMED, E.SUBMIT_REPORT): frozenset({S.COMPLETED}),
    (S.CONFIRMED, E.CANCEL): frozenset({S.CANCELLED}),
    (S.CONFIRMED, E.RESCHEDULE_APPROVED): frozenset({S.CONFIRMED}),
}


def is_terminal(status) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES


def allowed_targets(status, event) -> FrozenSet[BookingStatus]:
    """Estados destino posibles; vacío si el evento no aplica al estado."""
    return TRANSITIONS.get((BookingStatus(status), TransitionEvent(event)), frozenset())


def validate_transition(status, event, target=None) -> BookingStatus:
    status = BookingStatus(status)
    event = TransitionEvent(event)
    targets = allowed_targets(status, event)
    if not targets:
        raise InvalidTransition(f"Cannot apply '{event.value}' to a booking in status '{status.value}'")

    if target is None:
        if len(targets) > 1:
            raise InvalidTransition(f"Event '{event.value}' requires an explicit target from '{status.value}'")
        return next(iter(targets))

    target = BookingStatus(target)
    if target not in targets:
        raise InvalidTransition(f"Cannot move from '{status.value}' to '{target.value}' via '{event.value}'")
    return target
