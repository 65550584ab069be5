"""
Tests for the fixture-backed in-memory booking store.
"""

from dataclasses import replace
from datetime import date, time
from decimal import Decimal

import pytest

from spabooking.adapters.memory_store import InMemoryBookingStore
from spabooking.domain.exceptions import BookingStoreError, PersistenceConflictError
from spabooking.domain.models import (
    AppointmentDraft,
    AudienceKind,
    PlannedSession,
    RedemptionDraft,
    TreatmentCourseDraft,
)

DAY = date(2027, 3, 1)


@pytest.fixture
def store():
    return InMemoryBookingStore.from_file()


def _draft(**overrides) -> AppointmentDraft:
    values = dict(
        service_id="svc-facial",
        user_id="user-minh",
        date=DAY,
        time=time(16, 0),
        duration_minutes=60,
    )
    values.update(overrides)
    return AppointmentDraft(**values)


class TestLoading:
    """Fixture loading."""

    def test_loads_bundled_sample_data(self, store):
        assert len(store.services) == 4
        assert store.get_service("svc-massage").effective_price == Decimal("590000")
        assert store.get_client("user-linh").tier_level == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(BookingStoreError):
            InMemoryBookingStore.from_file(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        data_file = tmp_path / "broken.json"
        data_file.write_text("{not json", encoding="utf-8")

        with pytest.raises(BookingStoreError):
            InMemoryBookingStore.from_file(data_file)

    def test_root_must_be_object(self, tmp_path):
        data_file = tmp_path / "list.json"
        data_file.write_text("[]", encoding="utf-8")

        with pytest.raises(BookingStoreError):
            InMemoryBookingStore.from_file(data_file)

    def test_slot_checks_use_configured_timezone(self):
        store = InMemoryBookingStore.from_file(timezone="Europe/Paris")

        assert store.slot_checker.timezone == "Europe/Paris"

    def test_unknown_lookups(self, store):
        with pytest.raises(BookingStoreError):
            store.get_service("svc-nope")
        with pytest.raises(BookingStoreError):
            store.get_client("user-nope")


class TestQueries:
    """Read side of the store protocol."""

    def test_bookings_for_therapist(self, store):
        bookings = store.fetch_bookings_for_actor("ther-an", DAY)

        assert [b.id for b in bookings] == ["appt-100"]

    def test_bookings_for_client_include_cancelled(self, store):
        bookings = store.fetch_bookings_for_actor("user-hoa", DAY)

        assert {b.id for b in bookings} == {"appt-101", "appt-103"}

    def test_promotion_lookup_ignores_case(self, store):
        assert store.fetch_promotion("welcome10").id == "promo-welcome"
        assert store.fetch_promotion("NOPE") is None

    def test_promotion_audience_is_parsed(self, store):
        assert store.fetch_promotion("SILVER15").audience.level == 2
        assert store.fetch_promotion("BDAY20").audience.kind is AudienceKind.BIRTHDAY

    def test_redemptions_filtered_by_promotion(self, store):
        assert len(store.fetch_redemptions("user-hoa")) == 1
        assert store.fetch_redemptions("user-hoa", promotion_id="promo-spring") == []

    def test_busy_therapist_is_not_a_candidate(self, store):
        candidates = store.fetch_therapist_candidates("svc-facial", "user-linh", DAY, time(10, 0), 60)

        assert [c.id for c in candidates] == ["ther-binh", "ther-chi"]

    def test_candidate_history_and_workload(self, store):
        """ther-an treated Linh once before and has one booking that day."""
        candidates = store.fetch_therapist_candidates("svc-facial", "user-linh", DAY, time(9, 0), 60)
        by_id = {c.id: c for c in candidates}

        assert by_id["ther-an"].completed_with_client == 1
        assert by_id["ther-an"].bookings_that_day == 1
        assert by_id["ther-an"].staff_tier == "expert"
        assert by_id["ther-chi"].bookings_that_day == 0


class TestWrites:
    """Write side of the store protocol."""

    def test_create_and_delete_appointment(self, store):
        appointment = store.create_appointment(_draft())

        assert store.appointments[appointment.id] == appointment

        store.delete_appointment(appointment.id)
        assert appointment.id not in store.appointments

    def test_delete_unknown_appointment(self, store):
        with pytest.raises(BookingStoreError):
            store.delete_appointment("appt-nope")

    def test_therapist_slot_is_unique(self, store):
        with pytest.raises(PersistenceConflictError):
            store.create_appointment(_draft(therapist_id="ther-an", time=time(10, 0)))

    def test_cancelled_appointment_frees_the_slot(self, store):
        appointment = store.create_appointment(_draft(therapist_id="ther-chi", time=time(9, 0)))

        assert appointment.therapist_id == "ther-chi"

    def test_redemption_decrements_public_stock(self, store):
        appointment = store.create_appointment(_draft())

        redemption = store.create_redemption(
            RedemptionDraft(user_id="user-minh", promotion_id="promo-spring", appointment_id=appointment.id)
        )

        assert store.promotions["promo-spring"].stock == 19
        assert redemption.is_consumed
        assert redemption.promotion_audience.kind is AudienceKind.ALL
        assert store.appointments[appointment.id].promotion_id == "promo-spring"

    def test_redemption_out_of_stock(self, store):
        store.promotions["promo-spring"] = replace(store.promotions["promo-spring"], stock=0)

        with pytest.raises(BookingStoreError):
            store.create_redemption(
                RedemptionDraft(user_id="user-minh", promotion_id="promo-spring", appointment_id="appt-1")
            )

    def test_consume_reserved_redemption_once(self, store):
        consumed = store.consume_redemption("redemption-1", "appt-200")

        assert consumed.appointment_id == "appt-200"
        with pytest.raises(PersistenceConflictError):
            store.consume_redemption("redemption-1", "appt-201")

    def test_course_with_sessions_and_delete(self, store):
        course = store.create_treatment_course(
            TreatmentCourseDraft(
                service_id="svc-acne",
                client_id="user-minh",
                total_sessions=2,
                sessions_per_week=1,
                session_time=time(9, 0),
                session_duration_minutes=60,
                start_date=DAY,
                expiry_date=date(2027, 3, 22),
            )
        )
        sessions = store.create_sessions(
            course.id,
            [
                PlannedSession(sequence_number=1, date=DAY, time=time(9, 0)),
                PlannedSession(sequence_number=2, date=date(2027, 3, 8), time=time(9, 0)),
            ],
        )

        assert course.total_sessions == 2
        assert [s.sequence_number for s in sessions] == [1, 2]
        assert all(s.course_id == course.id for s in sessions)

        store.delete_treatment_course(course.id)
        assert not store.courses
        assert not store.sessions

    def test_sessions_need_existing_course(self, store):
        with pytest.raises(BookingStoreError):
            store.create_sessions("course-nope", [])
