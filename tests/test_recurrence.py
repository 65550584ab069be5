"""
Tests for treatment course session generation.
"""

from datetime import date, time

import pytest

from spabooking.domain.exceptions import RecurrenceBoundsError, ValidationError
from spabooking.domain.models import CourseDefinition
from spabooking.domain.recurrence import RecurrenceGenerator

MONDAY = date(2030, 1, 7)


def _course(**overrides) -> CourseDefinition:
    values = dict(total_sessions=4, session_time=time(9, 0), start_date=MONDAY)
    values.update(overrides)
    return CourseDefinition(**values)


class TestWeekdayPlacement:
    """Sessions placed on explicit weekdays."""

    def test_monday_thursday_course(self):
        """Six sessions on Monday and Thursday starting on a Monday."""
        sessions = RecurrenceGenerator().generate_sessions(
            _course(total_sessions=6, week_days=(1, 4), sessions_per_week=2)
        )

        assert [s.date for s in sessions] == [
            date(2030, 1, 7),
            date(2030, 1, 10),
            date(2030, 1, 14),
            date(2030, 1, 17),
            date(2030, 1, 21),
            date(2030, 1, 24),
        ]
        assert [s.sequence_number for s in sessions] == [1, 2, 3, 4, 5, 6]
        assert all(s.time == time(9, 0) for s in sessions)

    def test_start_between_weekdays_moves_to_next_match(self):
        """Starting on a Tuesday, the first session is the Thursday."""
        sessions = RecurrenceGenerator().generate_sessions(
            _course(total_sessions=3, start_date=date(2030, 1, 8), week_days=(1, 4))
        )

        assert [s.date for s in sessions] == [date(2030, 1, 10), date(2030, 1, 14), date(2030, 1, 17)]

    def test_sunday_is_index_zero(self):
        sessions = RecurrenceGenerator().generate_sessions(_course(total_sessions=2, week_days=(0,)))

        assert [s.date for s in sessions] == [date(2030, 1, 13), date(2030, 1, 20)]

    def test_weekday_order_in_input_does_not_matter(self):
        generator = RecurrenceGenerator()

        a = generator.generate_sessions(_course(week_days=(4, 1)))
        b = generator.generate_sessions(_course(week_days=(1, 4)))

        assert [s.date for s in a] == [s.date for s in b]


class TestSpacingPlacement:
    """Sessions spaced by sessions_per_week or weeks_per_session."""

    def test_weekly_sessions(self):
        sessions = RecurrenceGenerator().generate_sessions(_course(total_sessions=3))

        assert [s.date for s in sessions] == [date(2030, 1, 7), date(2030, 1, 14), date(2030, 1, 21)]

    def test_three_per_week_uses_whole_day_offsets(self):
        """7 / 3 days rounds down per session without drifting."""
        sessions = RecurrenceGenerator().generate_sessions(_course(total_sessions=4, sessions_per_week=3))

        assert [s.date for s in sessions] == [
            date(2030, 1, 7),
            date(2030, 1, 9),
            date(2030, 1, 11),
            date(2030, 1, 14),
        ]

    def test_every_other_week(self):
        sessions = RecurrenceGenerator().generate_sessions(_course(total_sessions=3, weeks_per_session=2))

        assert [s.date for s in sessions] == [date(2030, 1, 7), date(2030, 1, 21), date(2030, 2, 4)]

    def test_dates_are_strictly_increasing(self):
        sessions = RecurrenceGenerator().generate_sessions(_course(total_sessions=10, sessions_per_week=7))

        dates = [s.date for s in sessions]
        assert len(dates) == 10
        assert all(earlier < later for earlier, later in zip(dates, dates[1:]))


class TestExpiry:
    """Sessions past the course expiry are kept and flagged."""

    def test_sessions_after_expiry_are_flagged(self):
        generator = RecurrenceGenerator()
        expiry = date(2030, 1, 20)

        sessions = generator.generate_sessions(_course(total_sessions=4, expiry_date=expiry))

        assert len(sessions) == 4
        assert [s.past_expiry for s in sessions] == [False, False, True, True]

        warning = generator.bounds_warning(sessions, expiry)
        assert isinstance(warning, RecurrenceBoundsError)
        assert [s.sequence_number for s in warning.sessions] == [3, 4]
        assert warning.expiry_date == expiry

    def test_session_on_expiry_day_is_within_bounds(self):
        sessions = RecurrenceGenerator().generate_sessions(
            _course(total_sessions=2, expiry_date=date(2030, 1, 14))
        )

        assert not any(s.past_expiry for s in sessions)
        assert RecurrenceGenerator.bounds_warning(sessions, date(2030, 1, 14)) is None

    def test_no_expiry_means_no_warning(self):
        sessions = RecurrenceGenerator().generate_sessions(_course())

        assert RecurrenceGenerator.bounds_warning(sessions, None) is None


class TestValidation:
    """Unusable course definitions raise ValidationError."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"total_sessions": 0},
            {"week_days": (1, 7)},
            {"sessions_per_week": 0},
            {"sessions_per_week": 8},
            {"weeks_per_session": 0},
        ],
    )
    def test_invalid_definitions(self, overrides):
        with pytest.raises(ValidationError):
            RecurrenceGenerator().generate_sessions(_course(**overrides))
