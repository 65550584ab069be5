"""
Conflict checking for candidate appointment slots.

Pure domain logic: the booking set is always passed in by the caller, nothing
is cached between calls, so the same inputs always give the same answer.
"""

import datetime as dt
from typing import Iterable, List, Optional

import pendulum
from pendulum import DateTime

from .models import Appointment, minutes_since_midnight


class SlotAvailabilityChecker:
    """
    Decides whether a candidate slot fits into an actor's existing bookings.

    The actor is either a client (their own bookings) or a therapist (their
    bookings for the day); the rules are the same for both.

    Rules, evaluated per non-cancelled booking on the same date:
    1. Overlap of ``[start, start + duration)`` with the booking rejects.
    2. Starting at or after the booking ends is accepted (back-to-back is fine).
    3. Ending at or before the booking starts is accepted only when the new
       service's own duration fits before it: ``start <= b.start - duration``.
    4. Anything else rejects.
    A candidate that starts before "now" is always rejected.
    """

    def __init__(self, timezone: str = "Asia/Ho_Chi_Minh"):
        self.timezone = timezone

    def is_available(
        self,
        candidate_date: dt.date,
        candidate_time: dt.time,
        duration_minutes: int,
        existing_bookings: Iterable[Appointment],
        now: Optional[DateTime] = None,
    ) -> bool:
        """
        Check a candidate slot against an actor's bookings.

        Args:
            candidate_date: Calendar day of the candidate slot
            candidate_time: Local start time of the candidate slot
            duration_minutes: Duration of the service being booked
            existing_bookings: The actor's bookings (any dates, any status)
            now: Current time; defaults to ``pendulum.now`` in the configured timezone

        Returns:
            True if the slot can be booked
        """
        if self.is_past(candidate_date, candidate_time, now=now):
            return False

        return self.find_conflict(
            candidate_date,
            candidate_time,
            duration_minutes,
            existing_bookings,
        ) is None

    def is_past(
        self,
        candidate_date: dt.date,
        candidate_time: dt.time,
        now: Optional[DateTime] = None,
    ) -> bool:
        """Check if the candidate starts before the current wall-clock time."""
        current = now if now is not None else pendulum.now(self.timezone)
        candidate_start = pendulum.datetime(
            candidate_date.year,
            candidate_date.month,
            candidate_date.day,
            candidate_time.hour,
            candidate_time.minute,
            tz=self.timezone,
        )
        return candidate_start < current

    def find_conflict(
        self,
        candidate_date: dt.date,
        candidate_time: dt.time,
        duration_minutes: int,
        existing_bookings: Iterable[Appointment],
    ) -> Optional[Appointment]:
        """
        Return the first booking the candidate clashes with, or None.

        Bookings are visited in start-time order so the reported conflict is
        deterministic regardless of the order the store returned them in.
        """
        if duration_minutes <= 0:
            raise ValueError("Duration must be positive")

        start = minutes_since_midnight(candidate_time)
        end = start + duration_minutes

        for booking in self._relevant_bookings(candidate_date, existing_bookings):
            if not self._fits_around(start, end, duration_minutes, booking):
                return booking

        return None

    @staticmethod
    def _relevant_bookings(
        candidate_date: dt.date,
        existing_bookings: Iterable[Appointment],
    ) -> List[Appointment]:
        same_day = [
            booking for booking in existing_bookings
            if booking.date == candidate_date and not booking.is_cancelled
        ]
        return sorted(same_day, key=lambda b: b.start_minutes)

    @staticmethod
    def _fits_around(
        start: int,
        end: int,
        duration_minutes: int,
        booking: Appointment,
    ) -> bool:
        booking_start = booking.start_minutes
        booking_end = booking.end_minutes

        # Overlap is a hard conflict
        if start < booking_end and end > booking_start:
            return False

        # After the booking: no buffer required
        if start >= booking_end:
            return True

        # Before the booking: the new service has to fit entirely
        if end <= booking_start:
            return start <= booking_start - duration_minutes

        return False
