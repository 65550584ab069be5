"""
In-memory booking store backed by a JSON fixture.

Used by the test-suite and by the CLI's offline mode, without requiring
access to the booking API.
"""

import dataclasses
import datetime as dt
import itertools
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pendulum

from ..domain.exceptions import BookingStoreError, PersistenceConflictError
from ..domain.models import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    ClientProfile,
    PlannedSession,
    Promotion,
    Redemption,
    RedemptionDraft,
    Service,
    Session,
    TherapistCandidate,
    TreatmentCourse,
    TreatmentCourseDraft,
)
from ..domain.slot_checker import SlotAvailabilityChecker
from . import payloads

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "sample_data.json"


class InMemoryBookingStore:
    """
    Booking store that keeps everything in dictionaries.

    The fixture is a JSON object with the lists ``services``, ``users``,
    ``therapists``, ``appointments``, ``promotions`` and ``redemptions``, using
    the same payload shapes as the booking API. Like the real database it
    refuses a second live appointment for the same therapist (or client) at
    the same date and time. Redeeming a promotion decrements its stock when
    it is public and stamps it on the appointment.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None, timezone: str = "Asia/Ho_Chi_Minh"):
        data = data or {}
        self._ids = itertools.count(1)
        self.slot_checker = SlotAvailabilityChecker(timezone=timezone)

        self.services: Dict[str, Service] = {}
        self.clients: Dict[str, ClientProfile] = {}
        self.therapists: Dict[str, Dict[str, Any]] = {}
        self.appointments: Dict[str, Appointment] = {}
        self.promotions: Dict[str, Promotion] = {}
        self.redemptions: Dict[str, Redemption] = {}
        self.courses: Dict[str, TreatmentCourse] = {}
        self.sessions: Dict[str, Session] = {}

        for item in data.get("services", []):
            service = payloads.parse_service(item)
            self.services[service.id] = service
        for item in data.get("users", []):
            client = payloads.parse_client(item)
            self.clients[client.id] = client
        for item in data.get("therapists", []):
            if "id" not in item:
                raise BookingStoreError("Therapist entry without an id in fixture")
            self.therapists[item["id"]] = item
        for item in data.get("appointments", []):
            appointment = payloads.parse_appointment(item)
            self.appointments[appointment.id] = appointment
        for item in data.get("promotions", []):
            promotion = payloads.parse_promotion(item)
            self.promotions[promotion.id] = promotion
        for item in data.get("redemptions", []):
            redemption = payloads.parse_redemption(item)
            self.redemptions[redemption.id] = redemption

    @classmethod
    def from_file(
        cls,
        data_file: Optional[Path] = None,
        timezone: str = "Asia/Ho_Chi_Minh",
    ) -> "InMemoryBookingStore":
        """
        Load a store from a JSON fixture file.

        Args:
            data_file: Fixture path; defaults to the bundled sample data
            timezone: Spa timezone used for slot checks

        Raises:
            BookingStoreError: If the file is missing or not valid JSON
        """
        data_file = data_file or DEFAULT_DATA_FILE
        try:
            with open(data_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as exc:
            raise BookingStoreError(f"Data file not found: {data_file}") from exc
        except json.JSONDecodeError as exc:
            raise BookingStoreError(f"Invalid JSON in {data_file}: {exc}") from exc

        if not isinstance(data, dict):
            raise BookingStoreError(f"Data file {data_file} must contain a JSON object")

        logger.debug("Loaded booking fixture from %s", data_file)
        return cls(data, timezone=timezone)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # Lookups used by the CLI

    def get_service(self, service_id: str) -> Service:
        try:
            return self.services[service_id]
        except KeyError:
            raise BookingStoreError(f"Unknown service: {service_id}") from None

    def get_client(self, user_id: str) -> ClientProfile:
        try:
            return self.clients[user_id]
        except KeyError:
            raise BookingStoreError(f"Unknown user: {user_id}") from None

    # BookingStoreProtocol

    def fetch_bookings_for_actor(self, actor_id: str, day: dt.date) -> List[Appointment]:
        return [
            a for a in self.appointments.values()
            if a.date == day and actor_id in (a.user_id, a.therapist_id)
        ]

    def fetch_appointments_for_user(self, user_id: str) -> List[Appointment]:
        return [a for a in self.appointments.values() if a.user_id == user_id]

    def fetch_promotion(self, code: str) -> Optional[Promotion]:
        wanted = code.strip().upper()
        return next(
            (p for p in self.promotions.values() if p.code.upper() == wanted),
            None,
        )

    def fetch_redemptions(self, user_id: str, promotion_id: Optional[str] = None) -> List[Redemption]:
        return [
            r for r in self.redemptions.values()
            if r.user_id == user_id and (promotion_id is None or r.promotion_id == promotion_id)
        ]

    def fetch_therapist_candidates(
        self,
        service_id: str,
        client_id: str,
        day: dt.date,
        start: dt.time,
        duration_minutes: int,
    ) -> List[TherapistCandidate]:
        candidates: List[TherapistCandidate] = []

        for therapist_id, therapist in self.therapists.items():
            bookings = self.fetch_bookings_for_actor(therapist_id, day)
            if self.slot_checker.find_conflict(day, start, duration_minutes, bookings) is not None:
                continue

            completed = sum(
                1 for a in self.appointments.values()
                if a.therapist_id == therapist_id
                and a.user_id == client_id
                and a.status is AppointmentStatus.COMPLETED
            )
            candidates.append(
                TherapistCandidate(
                    id=therapist_id,
                    name=therapist.get("name", ""),
                    specialties=tuple(therapist.get("specialty") or ()),
                    staff_tier=therapist.get("staffTier"),
                    completed_with_client=completed,
                    bookings_that_day=sum(1 for b in bookings if not b.is_cancelled),
                )
            )

        logger.debug(
            "%d therapist(s) free for %s on %s at %s",
            len(candidates),
            service_id,
            day.isoformat(),
            start.strftime("%H:%M"),
        )
        return candidates

    def create_appointment(self, draft: AppointmentDraft) -> Appointment:
        for existing in self.appointments.values():
            if existing.is_cancelled or (existing.date, existing.time) != (draft.date, draft.time):
                continue
            if draft.therapist_id and existing.therapist_id == draft.therapist_id:
                raise PersistenceConflictError(
                    f"Therapist {draft.therapist_id} already has appointment {existing.id} at this time"
                )
            if existing.user_id == draft.user_id:
                raise PersistenceConflictError(
                    f"User {draft.user_id} already has appointment {existing.id} at this time"
                )

        appointment = Appointment(
            id=self._next_id("appt"),
            service_id=draft.service_id,
            user_id=draft.user_id,
            date=draft.date,
            time=draft.time,
            duration_minutes=draft.duration_minutes,
            status=draft.status,
            payment_status=draft.payment_status,
            therapist_id=draft.therapist_id,
            group_id=draft.group_id,
            promotion_id=draft.promotion_id,
            notes=draft.notes,
        )
        self.appointments[appointment.id] = appointment
        return appointment

    def delete_appointment(self, appointment_id: str) -> None:
        if self.appointments.pop(appointment_id, None) is None:
            raise BookingStoreError(f"Unknown appointment: {appointment_id}")

    def create_treatment_course(self, draft: TreatmentCourseDraft) -> TreatmentCourse:
        fields = {f.name: getattr(draft, f.name) for f in dataclasses.fields(draft)}
        course = TreatmentCourse(id=self._next_id("course"), **fields)
        self.courses[course.id] = course
        return course

    def delete_treatment_course(self, course_id: str) -> None:
        if self.courses.pop(course_id, None) is None:
            raise BookingStoreError(f"Unknown treatment course: {course_id}")
        self.sessions = {
            key: session for key, session in self.sessions.items()
            if session.course_id != course_id
        }

    def create_sessions(self, course_id: str, sessions: Sequence[PlannedSession]) -> List[Session]:
        if course_id not in self.courses:
            raise BookingStoreError(f"Unknown treatment course: {course_id}")

        created: List[Session] = []
        for planned in sessions:
            session = Session(
                id=self._next_id("session"),
                course_id=course_id,
                sequence_number=planned.sequence_number,
                date=planned.date,
                time=planned.time,
                status=planned.status,
                appointment_id=planned.appointment_id,
            )
            self.sessions[session.id] = session
            created.append(session)
        return created

    def create_redemption(self, draft: RedemptionDraft) -> Redemption:
        promotion = self.promotions.get(draft.promotion_id)
        if promotion is None:
            raise BookingStoreError(f"Unknown promotion: {draft.promotion_id}")

        if promotion.is_public and promotion.stock is not None:
            if promotion.stock <= 0:
                raise BookingStoreError(f"Promotion {promotion.code} is out of stock")
            self.promotions[promotion.id] = dataclasses.replace(promotion, stock=promotion.stock - 1)

        redemption = Redemption(
            id=self._next_id("redemption"),
            user_id=draft.user_id,
            promotion_id=draft.promotion_id,
            redeemed_at=pendulum.now("UTC"),
            appointment_id=draft.appointment_id,
            promotion_audience=promotion.audience,
        )
        self.redemptions[redemption.id] = redemption
        self._link_promotion(draft.appointment_id, draft.promotion_id)
        return redemption

    def consume_redemption(self, redemption_id: str, appointment_id: str) -> Redemption:
        redemption = self.redemptions.get(redemption_id)
        if redemption is None:
            raise BookingStoreError(f"Unknown redemption: {redemption_id}")
        if redemption.is_consumed:
            raise PersistenceConflictError(f"Redemption {redemption_id} has already been used")

        consumed = dataclasses.replace(redemption, appointment_id=appointment_id)
        self.redemptions[redemption_id] = consumed
        self._link_promotion(appointment_id, consumed.promotion_id)
        return consumed

    def _link_promotion(self, appointment_id: Optional[str], promotion_id: str) -> None:
        appointment = self.appointments.get(appointment_id)
        if appointment is not None:
            self.appointments[appointment_id] = dataclasses.replace(appointment, promotion_id=promotion_id)
