"""
Staff-driven appointment status transitions.
"""

from dataclasses import replace
from typing import Dict, FrozenSet, Optional

from .exceptions import ValidationError
from .models import Appointment, AppointmentStatus


ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.UPCOMING, AppointmentStatus.CANCELLED}),
    AppointmentStatus.UPCOMING: frozenset({AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED}),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    appointment: Appointment,
    target: AppointmentStatus,
    rejection_reason: Optional[str] = None,
) -> Appointment:
    """
    Return a copy of the appointment moved to ``target``.

    Raises:
        ValidationError: If the move is not allowed from the current status
    """
    if not can_transition(appointment.status, target):
        raise ValidationError(
            f"Appointment {appointment.id} cannot move from {appointment.status.value} to {target.value}"
        )

    if target is AppointmentStatus.CANCELLED:
        return replace(appointment, status=target, rejection_reason=rejection_reason)
    return replace(appointment, status=target)


def update_notes(appointment: Appointment, notes: str) -> Appointment:
    """Notes stay editable in every status, including terminal ones."""
    return replace(appointment, notes=notes)
