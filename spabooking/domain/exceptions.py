"""
Domain-specific exception hierarchy for the spa booking core.
"""

from __future__ import annotations

from datetime import date, time
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .models import Appointment, PlannedSession


class BookingError(Exception):
    """Base class for all application-level errors."""


class ValidationError(BookingError):
    """Raised when required booking input is missing or malformed."""


class SlotConflictError(BookingError):
    """A candidate slot overlaps an existing booking or does not fit before one."""

    def __init__(
        self,
        slot_date: date,
        slot_time: time,
        service_id: str,
        conflicting: Optional["Appointment"] = None,
        message: str | None = None,
    ):
        self.slot_date = slot_date
        self.slot_time = slot_time
        self.service_id = service_id
        self.conflicting = conflicting
        if message is None:
            message = f"Slot {slot_date.isoformat()} {slot_time.strftime('%H:%M')} is not available for service {service_id}"
            if conflicting is not None:
                message += f" (conflicts with appointment {conflicting.id})"
        super().__init__(message)


class PromotionIneligibleError(BookingError):
    """A promotion cannot be applied; the booking proceeds without it."""

    def __init__(self, code: str, reason: str, message: str):
        self.code = code
        self.reason = reason
        super().__init__(message)


class RecurrenceBoundsError(BookingError):
    """Generated course sessions fall after the course expiry date."""

    def __init__(self, expiry_date: date, sessions: Sequence["PlannedSession"]):
        self.expiry_date = expiry_date
        self.sessions = list(sessions)
        numbers = ", ".join(str(s.sequence_number) for s in self.sessions)
        super().__init__(
            f"Session(s) {numbers} fall after the course expiry date {expiry_date.isoformat()}"
        )


class BookingStoreError(BookingError):
    """Raised when the persistence collaborator fails or returns malformed data."""


class PersistenceConflictError(BookingStoreError):
    """The store rejected an insert because the slot is already taken."""
