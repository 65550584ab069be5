"""
Expansion of treatment-course definitions into dated sessions.
"""

import datetime as dt
import logging
from typing import List, Optional, Sequence

import pendulum

from .exceptions import RecurrenceBoundsError, ValidationError
from .models import CourseDefinition, PlannedSession, weekday_index

logger = logging.getLogger(__name__)

# Courses are short; this only guards against a runaway weekday walk.
MAX_SESSIONS = 366


class RecurrenceGenerator:
    """
    Builds the full, ordered session list of a course at creation time.

    Two placement modes:
    - explicit weekdays: every matching day from the start date onwards,
      which cycles the weekday set in ascending order week by week;
    - spacing: one session every ``7 / sessions_per_week`` days, or every
      ``weeks_per_session`` weeks when that is set.
    """

    def generate_sessions(self, course: CourseDefinition) -> List[PlannedSession]:
        """
        Generate exactly ``course.total_sessions`` sessions numbered from 1.

        Sessions after ``course.expiry_date`` are kept and flagged
        ``past_expiry``; see ``bounds_warning``.

        Raises:
            ValidationError: If the course definition is unusable
        """
        self._validate(course)

        start = pendulum.date(course.start_date.year, course.start_date.month, course.start_date.day)

        if course.week_days:
            dates = self._dates_on_weekdays(start, course.total_sessions, course.week_days)
        else:
            dates = self._dates_by_spacing(
                start,
                course.total_sessions,
                course.sessions_per_week,
                course.weeks_per_session,
            )

        sessions = [
            PlannedSession(
                sequence_number=number,
                date=session_date,
                time=course.session_time,
                past_expiry=self._is_past_expiry(session_date, course.expiry_date),
            )
            for number, session_date in enumerate(dates, start=1)
        ]

        late = [s for s in sessions if s.past_expiry]
        if late:
            logger.warning(
                "%d of %d generated sessions fall after expiry %s",
                len(late),
                len(sessions),
                course.expiry_date,
            )

        return sessions

    @staticmethod
    def bounds_warning(
        sessions: Sequence[PlannedSession],
        expiry_date: Optional[dt.date],
    ) -> Optional[RecurrenceBoundsError]:
        """Describe sessions past expiry as a warning, or None if all fit."""
        late = [s for s in sessions if s.past_expiry]
        if not late or expiry_date is None:
            return None
        return RecurrenceBoundsError(expiry_date, late)

    @classmethod
    def _validate(cls, course: CourseDefinition) -> None:
        cls.check_pattern(
            course.total_sessions,
            course.sessions_per_week,
            course.week_days,
            course.weeks_per_session,
        )

    @staticmethod
    def check_pattern(
        total_sessions: int,
        sessions_per_week: int,
        week_days: Sequence[int] = (),
        weeks_per_session: Optional[int] = None,
    ) -> None:
        """
        Reject a recurrence pattern that cannot produce sessions.

        Raises:
            ValidationError: If any field is out of range
        """
        if total_sessions < 1:
            raise ValidationError("A course needs at least one session")

        if total_sessions > MAX_SESSIONS:
            raise ValidationError(f"A course cannot have more than {MAX_SESSIONS} sessions")

        invalid_days = [day for day in week_days if day not in range(7)]
        if invalid_days:
            raise ValidationError(f"Weekday indices must be between 0 and 6, got {invalid_days}")

        if not week_days:
            if weeks_per_session is not None:
                if weeks_per_session < 1:
                    raise ValidationError("weeks_per_session must be at least 1")
            elif not 1 <= sessions_per_week <= 7:
                raise ValidationError(
                    f"sessions_per_week must be between 1 and 7, got {sessions_per_week}"
                )

    @staticmethod
    def _dates_on_weekdays(
        start: pendulum.Date,
        total_sessions: int,
        week_days: Sequence[int],
    ) -> List[dt.date]:
        wanted = set(week_days)
        dates: List[dt.date] = []
        current = start

        while len(dates) < total_sessions:
            if weekday_index(current) in wanted:
                dates.append(current)
            current = current.add(days=1)

        return dates

    @staticmethod
    def _dates_by_spacing(
        start: pendulum.Date,
        total_sessions: int,
        sessions_per_week: int,
        weeks_per_session: Optional[int],
    ) -> List[dt.date]:
        if weeks_per_session is not None:
            return [start.add(weeks=i * weeks_per_session) for i in range(total_sessions)]

        # Integer offsets keep fractional spacing (e.g. 3 per week) from drifting
        return [start.add(days=(i * 7) // sessions_per_week) for i in range(total_sessions)]

    @staticmethod
    def _is_past_expiry(session_date: dt.date, expiry_date: Optional[dt.date]) -> bool:
        return expiry_date is not None and session_date > expiry_date
