"""
Application service that turns one booking action into persisted appointments.

The orchestrator coordinates the booking store (an external collaborator,
reached through a protocol) with the pure domain components: slot checking,
course recurrence and promotion eligibility. Nothing is written to the store
until every check has passed, and anything written during a failed commit is
removed again, so a rejected booking never leaves appointments behind.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import pendulum
from pendulum import DateTime

from ..config import BookingDefaults
from ..domain.exceptions import (
    BookingError,
    BookingStoreError,
    PersistenceConflictError,
    PromotionIneligibleError,
    SlotConflictError,
    ValidationError,
)
from ..domain.models import (
    MINUTES_PER_DAY,
    Appointment,
    AppointmentDraft,
    AudienceKind,
    Cart,
    CartItem,
    ClientProfile,
    CourseDefinition,
    PlannedSession,
    Promotion,
    Redemption,
    RedemptionDraft,
    Service,
    Session,
    TherapistCandidate,
    TreatmentCourse,
    TreatmentCourseDraft,
    minutes_since_midnight,
    time_from_minutes,
    weekday_index,
)
from ..domain.promotions import (
    EligibilityResult,
    IneligibilityReason,
    PromotionEligibilityEvaluator,
)
from ..domain.recurrence import RecurrenceGenerator
from ..domain.slot_checker import SlotAvailabilityChecker
from ..domain.therapist_assignment import TherapistAssigner

logger = logging.getLogger(__name__)


class BookingStoreProtocol(Protocol):
    """Protocol describing the persistence collaborator used by the orchestrator."""

    def fetch_bookings_for_actor(self, actor_id: str, day: dt.date) -> List[Appointment]:
        """Appointments of a client or therapist on one day."""

    def fetch_appointments_for_user(self, user_id: str) -> List[Appointment]:
        """Every appointment of a client."""

    def fetch_promotion(self, code: str) -> Optional[Promotion]:
        """Promotion by code, or None when the code is unknown."""

    def fetch_redemptions(self, user_id: str, promotion_id: Optional[str] = None) -> List[Redemption]:
        """Redemptions of a user, optionally for one promotion."""

    def fetch_therapist_candidates(
        self,
        service_id: str,
        client_id: str,
        day: dt.date,
        start: dt.time,
        duration_minutes: int,
    ) -> List[TherapistCandidate]:
        """Therapists free for the whole slot, scored against this client's history."""

    def create_appointment(self, draft: AppointmentDraft) -> Appointment:
        """Insert an appointment; raises PersistenceConflictError if the slot is taken."""

    def delete_appointment(self, appointment_id: str) -> None:
        """Remove an appointment created during a failed commit."""

    def create_treatment_course(self, draft: TreatmentCourseDraft) -> TreatmentCourse:
        """Insert a treatment course."""

    def delete_treatment_course(self, course_id: str) -> None:
        """Remove a course (and its sessions) created during a failed commit."""

    def create_sessions(self, course_id: str, sessions: Sequence[PlannedSession]) -> List[Session]:
        """Insert the sessions of a course."""

    def create_redemption(self, draft: RedemptionDraft) -> Redemption:
        """Record the use of a promotion by a booking."""

    def consume_redemption(self, redemption_id: str, appointment_id: str) -> Redemption:
        """Link a reserved redemption to the appointment that uses it."""


class BookingState(str, Enum):
    DRAFT = "draft"
    VALIDATING = "validating"
    COMMITTING = "committing"
    COMMITTED = "committed"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    SLOT_CONFLICT = "slot_conflict"
    PROMO_INVALID = "promo_invalid"
    MISSING_FIELDS = "missing_fields"


@dataclass
class BookingLine:
    """One selected service; ``sessions > 1`` books a treatment course."""
    service: Service
    sessions: int = 1


@dataclass
class BookingRequest:
    """Everything the client picked before confirming."""
    client: Optional[ClientProfile]
    lines: List[BookingLine]
    date: Optional[dt.date]
    time: Optional[dt.time]
    therapist_id: Optional[str] = None
    promo_code: Optional[str] = None
    week_days: Tuple[int, ...] = ()
    sessions_per_week: Optional[int] = None
    weeks_per_session: Optional[int] = None
    require_promotion: bool = False
    notes: str = ""


@dataclass
class PlannedSlot:
    line: BookingLine
    date: dt.date
    time: dt.time
    therapist_id: Optional[str] = None

    @property
    def duration_minutes(self) -> int:
        return self.line.service.duration_minutes


@dataclass
class BookingOutcome:
    state: BookingState = BookingState.DRAFT
    group_id: Optional[str] = None
    appointments: List[Appointment] = field(default_factory=list)
    courses: List[TreatmentCourse] = field(default_factory=list)
    sessions: List[Session] = field(default_factory=list)
    redemption: Optional[Redemption] = None
    eligibility: Optional[EligibilityResult] = None
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    rejection: Optional[RejectionReason] = None
    conflicts: List[SlotConflictError] = field(default_factory=list)
    warnings: List[BookingError] = field(default_factory=list)
    error: Optional[BookingError] = None

    @property
    def total(self) -> Decimal:
        return max(Decimal("0"), self.subtotal - self.discount)

    @property
    def is_committed(self) -> bool:
        return self.state is BookingState.COMMITTED


@dataclass
class _CoursePlan:
    slot: PlannedSlot
    definition: CourseDefinition
    sessions: List[PlannedSession]


class BookingOrchestrator:
    """
    Runs a booking attempt through Draft -> Validating -> Committing.

    Slot conflicts reject the whole booking before anything is written.
    Promotion problems only produce warnings unless the request insists on
    the promotion. Insert-time conflicts from the store are reported as slot
    conflicts after the partial group has been rolled back.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        *,
        settings: Optional[BookingDefaults] = None,
        timezone: str = "Asia/Ho_Chi_Minh",
        slot_checker: Optional[SlotAvailabilityChecker] = None,
        recurrence: Optional[RecurrenceGenerator] = None,
        evaluator: Optional[PromotionEligibilityEvaluator] = None,
        assigner: Optional[TherapistAssigner] = None,
    ) -> None:
        self._store = store
        self._settings = settings or BookingDefaults()
        self._timezone = timezone
        self._slot_checker = slot_checker or SlotAvailabilityChecker(timezone=timezone)
        self._recurrence = recurrence or RecurrenceGenerator()
        self._evaluator = evaluator or PromotionEligibilityEvaluator()
        self._assigner = assigner or TherapistAssigner()

    def is_slot_available(
        self,
        actor_id: str,
        day: dt.date,
        start: dt.time,
        duration_minutes: int,
        now: Optional[DateTime] = None,
    ) -> bool:
        """
        Re-check one slot against freshly fetched bookings.

        Meant to be called every time the client changes the candidate time.
        """
        bookings = self._store.fetch_bookings_for_actor(actor_id, day)
        return self._slot_checker.is_available(day, start, duration_minutes, bookings, now=now)

    def book(self, request: BookingRequest, now: Optional[DateTime] = None) -> BookingOutcome:
        """
        Validate and commit a booking request.

        Returns:
            BookingOutcome in state COMMITTED or REJECTED

        Raises:
            BookingStoreError: If the store fails for a reason other than a
                slot conflict (after rolling back anything already written)
        """
        now = now if now is not None else pendulum.now(self._timezone)
        outcome = BookingOutcome()

        try:
            self._validate_request(request)
        except ValidationError as exc:
            logger.info("Booking rejected, invalid request: %s", exc)
            outcome.error = exc
            return self._reject(outcome, RejectionReason.MISSING_FIELDS)

        outcome.state = BookingState.VALIDATING
        slots = self.plan_slots(request)
        self._assign_therapists(request, slots)

        conflicts = self._find_conflicts(slots, request.client.id, now)
        if conflicts:
            outcome.conflicts = conflicts
            return self._reject(outcome, RejectionReason.SLOT_CONFLICT)

        cart = self.build_cart(request)
        outcome.subtotal = cart.subtotal

        promotion: Optional[Promotion] = None
        if request.promo_code:
            promotion, eligibility = self.evaluate_promotion(request, cart, now)
            outcome.eligibility = eligibility
            if eligibility.applicable:
                outcome.discount = eligibility.discount_amount
            else:
                warning = eligibility.as_error(request.promo_code)
                outcome.warnings.append(warning)
                logger.info("Promotion %s not applied: %s", request.promo_code, warning)
                if request.require_promotion:
                    return self._reject(outcome, RejectionReason.PROMO_INVALID)
                promotion = None

        course_plans = self._plan_courses(request, slots)
        for plan in course_plans:
            bounds = self._recurrence.bounds_warning(plan.sessions, plan.definition.expiry_date)
            if bounds is not None:
                outcome.warnings.append(bounds)

        outcome.state = BookingState.COMMITTING

        # Authoritative re-check right before writing
        conflicts = self._find_conflicts(slots, request.client.id, now)
        if conflicts:
            outcome.conflicts = conflicts
            return self._reject(outcome, RejectionReason.SLOT_CONFLICT)

        try:
            self._commit(request, slots, course_plans, promotion, outcome)
        except SlotConflictError as exc:
            logger.warning("Store rejected booking for client %s: %s", request.client.id, exc)
            outcome.conflicts = [exc]
            return self._reject(outcome, RejectionReason.SLOT_CONFLICT)

        outcome.state = BookingState.COMMITTED
        logger.info(
            "Booked %d appointment(s) in group %s for client %s",
            len(outcome.appointments),
            outcome.group_id,
            request.client.id,
        )
        return outcome

    def plan_slots(self, request: BookingRequest) -> List[PlannedSlot]:
        """Stack the services one after another from the chosen start time."""
        slots: List[PlannedSlot] = []
        offset = minutes_since_midnight(request.time)

        for line in request.lines:
            slots.append(
                PlannedSlot(
                    line=line,
                    date=request.date,
                    time=time_from_minutes(offset),
                    therapist_id=request.therapist_id,
                )
            )
            offset += line.service.duration_minutes

        return slots

    @staticmethod
    def build_cart(request: BookingRequest) -> Cart:
        return Cart(
            items=[
                CartItem(
                    service_id=line.service.id,
                    unit_price=line.service.effective_price,
                    quantity=line.sessions,
                )
                for line in request.lines
            ]
        )

    def _validate_request(self, request: BookingRequest) -> None:
        missing = []
        if request.client is None or not request.client.id:
            missing.append("client")
        if not request.lines:
            missing.append("services")
        if request.date is None:
            missing.append("date")
        if request.time is None:
            missing.append("time")
        if missing:
            raise ValidationError(f"Missing booking fields: {', '.join(missing)}")

        for line in request.lines:
            if line.sessions < 1:
                raise ValidationError(f"Service {line.service.id} needs at least one session")

        total_minutes = sum(line.service.duration_minutes for line in request.lines)
        if minutes_since_midnight(request.time) + total_minutes > MINUTES_PER_DAY:
            raise ValidationError("The selected services run past the end of the day")

        course_lines = [line for line in request.lines if line.sessions > 1]
        for line in course_lines:
            self._recurrence.check_pattern(
                line.sessions,
                self._sessions_per_week(request),
                request.week_days,
                request.weeks_per_session,
            )

        if course_lines and request.week_days and weekday_index(request.date) not in request.week_days:
            raise ValidationError(
                "The booking date must fall on one of the course weekdays"
            )

    def _assign_therapists(self, request: BookingRequest, slots: List[PlannedSlot]) -> None:
        if request.therapist_id or not self._settings.smart_assignment:
            return

        for slot in slots:
            candidates = self._store.fetch_therapist_candidates(
                slot.line.service.id,
                request.client.id,
                slot.date,
                slot.time,
                slot.duration_minutes,
            )
            chosen = self._assigner.pick(slot.line.service, candidates)
            if chosen is not None:
                logger.info("Assigned therapist %s to service %s", chosen.id, slot.line.service.id)
                slot.therapist_id = chosen.id
            else:
                logger.info("No therapist assigned to service %s, leaving it open", slot.line.service.id)

    def _find_conflicts(
        self,
        slots: Sequence[PlannedSlot],
        client_id: str,
        now: DateTime,
    ) -> List[SlotConflictError]:
        """Check every slot and report each conflicting one."""
        bookings_by_actor: Dict[Tuple[str, dt.date], List[Appointment]] = {}

        def bookings_for(actor_id: str, day: dt.date) -> List[Appointment]:
            key = (actor_id, day)
            if key not in bookings_by_actor:
                bookings_by_actor[key] = self._store.fetch_bookings_for_actor(actor_id, day)
            return bookings_by_actor[key]

        conflicts: List[SlotConflictError] = []

        for slot in slots:
            service_id = slot.line.service.id

            if self._slot_checker.is_past(slot.date, slot.time, now=now):
                conflicts.append(
                    SlotConflictError(
                        slot.date,
                        slot.time,
                        service_id,
                        message=f"Slot {slot.date.isoformat()} {slot.time.strftime('%H:%M')} is in the past",
                    )
                )
                continue

            actors = [client_id]
            if slot.therapist_id:
                actors.append(slot.therapist_id)

            for actor_id in actors:
                clash = self._slot_checker.find_conflict(
                    slot.date,
                    slot.time,
                    slot.duration_minutes,
                    bookings_for(actor_id, slot.date),
                )
                if clash is not None:
                    conflicts.append(SlotConflictError(slot.date, slot.time, service_id, clash))
                    break

        if conflicts:
            logger.info("%d of %d slot(s) unavailable", len(conflicts), len(slots))
        return conflicts

    def evaluate_promotion(
        self,
        request: BookingRequest,
        cart: Optional[Cart] = None,
        now: Optional[DateTime] = None,
    ) -> Tuple[Optional[Promotion], EligibilityResult]:
        """
        Look up the request's promo code and check it against the client and cart.

        Unknown codes come back as an ``unknown_code`` rejection rather than an error.
        """
        cart = cart if cart is not None else self.build_cart(request)
        now = now if now is not None else pendulum.now(self._timezone)
        promotion = self._store.fetch_promotion(request.promo_code)
        if promotion is None:
            return None, EligibilityResult.rejected(
                IneligibilityReason.UNKNOWN_CODE,
                f"Promotion code {request.promo_code} does not exist",
            )

        redemptions = self._store.fetch_redemptions(request.client.id)
        appointments: List[Appointment] = []
        if promotion.audience.kind is AudienceKind.NEW_CLIENTS:
            appointments = self._store.fetch_appointments_for_user(request.client.id)

        result = self._evaluator.evaluate(
            client=request.client,
            cart=cart,
            promotion=promotion,
            redemptions=redemptions,
            today=now.date(),
            appointments=appointments,
            booking_date=request.date,
        )
        return promotion, result

    def _plan_courses(self, request: BookingRequest, slots: Sequence[PlannedSlot]) -> List[_CoursePlan]:
        plans: List[_CoursePlan] = []

        for slot in slots:
            if slot.line.sessions <= 1:
                continue

            definition = CourseDefinition(
                total_sessions=slot.line.sessions,
                session_time=slot.time,
                start_date=slot.date,
                sessions_per_week=self._sessions_per_week(request),
                week_days=tuple(sorted(set(request.week_days))),
                weeks_per_session=request.weeks_per_session,
                expiry_date=self._default_expiry(slot.date, slot.line.sessions),
            )
            plans.append(
                _CoursePlan(
                    slot=slot,
                    definition=definition,
                    sessions=self._recurrence.generate_sessions(definition),
                )
            )

        return plans

    def _sessions_per_week(self, request: BookingRequest) -> int:
        if request.week_days:
            return len(set(request.week_days))
        if request.sessions_per_week is not None:
            return request.sessions_per_week
        return self._settings.default_sessions_per_week

    def _default_expiry(self, start: dt.date, sessions: int) -> dt.date:
        weeks = sessions + self._settings.course_extra_weeks
        return pendulum.date(start.year, start.month, start.day).add(weeks=weeks)

    def _commit(
        self,
        request: BookingRequest,
        slots: Sequence[PlannedSlot],
        course_plans: Sequence[_CoursePlan],
        promotion: Optional[Promotion],
        outcome: BookingOutcome,
    ) -> None:
        """Write everything; on any store failure undo what was written and re-raise."""
        group_id = f"group-{uuid.uuid4()}"
        created_appointments: List[Appointment] = []
        created_courses: List[TreatmentCourse] = []
        booked: List[Tuple[PlannedSlot, Appointment]] = []

        try:
            for slot in slots:
                appointment = self._create_appointment(
                    AppointmentDraft(
                        service_id=slot.line.service.id,
                        user_id=request.client.id,
                        date=slot.date,
                        time=slot.time,
                        duration_minutes=slot.duration_minutes,
                        therapist_id=slot.therapist_id,
                        group_id=group_id,
                        notes=request.notes,
                    )
                )
                created_appointments.append(appointment)
                booked.append((slot, appointment))

            # Redeem before courses: course totals use the final discount
            redemption = None
            if promotion is not None:
                redemption = self._try_record_redemption(
                    request, promotion, outcome, booked[0][1]
                )
                if redemption is not None:
                    created_appointments[0] = replace(
                        created_appointments[0], promotion_id=promotion.id
                    )

            sessions: List[Session] = []
            for plan in course_plans:
                first_appointment = next(a for s, a in booked if s is plan.slot)
                course = self._store.create_treatment_course(
                    self._course_draft(request, plan, outcome)
                )
                created_courses.append(course)

                linked = self._link_sessions(
                    request, plan, course, first_appointment, created_appointments
                )
                sessions.extend(self._store.create_sessions(course.id, linked))

        except (SlotConflictError, BookingStoreError):
            self._rollback(created_appointments, created_courses)
            raise

        outcome.group_id = group_id
        outcome.appointments = created_appointments
        outcome.courses = created_courses
        outcome.sessions = sessions
        outcome.redemption = redemption

    def _course_draft(
        self,
        request: BookingRequest,
        plan: _CoursePlan,
        outcome: BookingOutcome,
    ) -> TreatmentCourseDraft:
        service = plan.slot.line.service
        amount = service.effective_price * plan.definition.total_sessions
        if outcome.subtotal > 0 and outcome.discount > 0:
            # Spread the discount over lines in proportion to their amount
            amount -= (outcome.discount * amount / outcome.subtotal).quantize(Decimal("0.01"))

        return TreatmentCourseDraft(
            service_id=service.id,
            client_id=request.client.id,
            total_sessions=plan.definition.total_sessions,
            sessions_per_week=plan.definition.sessions_per_week,
            session_time=plan.definition.session_time,
            session_duration_minutes=service.duration_minutes,
            start_date=plan.definition.start_date,
            expiry_date=plan.definition.expiry_date,
            week_days=plan.definition.week_days,
            weeks_per_session=plan.definition.weeks_per_session,
            therapist_id=plan.slot.therapist_id,
            total_amount=amount,
        )

    def _link_sessions(
        self,
        request: BookingRequest,
        plan: _CoursePlan,
        course: TreatmentCourse,
        first_appointment: Appointment,
        created_appointments: List[Appointment],
    ) -> List[PlannedSession]:
        """
        Link the first session to the booking's appointment.

        With ``materialize_course_sessions`` every later session also gets a
        placeholder pending appointment, so no session is left unlinked.
        """
        linked: List[PlannedSession] = []

        for session in plan.sessions:
            if session.sequence_number == 1:
                appointment_id: Optional[str] = first_appointment.id
            elif self._settings.materialize_course_sessions:
                placeholder = self._create_appointment(
                    AppointmentDraft(
                        service_id=course.service_id,
                        user_id=request.client.id,
                        date=session.date,
                        time=session.time,
                        duration_minutes=course.session_duration_minutes,
                        therapist_id=course.therapist_id,
                        group_id=f"group-{course.id}",
                        notes=f"Session {session.sequence_number} of course {course.id}",
                    )
                )
                created_appointments.append(placeholder)
                appointment_id = placeholder.id
            else:
                appointment_id = None

            linked.append(
                PlannedSession(
                    sequence_number=session.sequence_number,
                    date=session.date,
                    time=session.time,
                    status=session.status,
                    past_expiry=session.past_expiry,
                    appointment_id=appointment_id,
                )
            )

        return linked

    def _try_record_redemption(
        self,
        request: BookingRequest,
        promotion: Promotion,
        outcome: BookingOutcome,
        appointment: Appointment,
    ) -> Optional[Redemption]:
        """
        Redeem the promotion for the booking, or drop the discount if that fails.

        Stock can run out (or a reserved voucher be used elsewhere) between
        evaluation and commit. The booking then goes ahead at full price with
        a warning.
        """
        try:
            return self._record_redemption(request, promotion, outcome.eligibility, appointment)
        except BookingStoreError as exc:
            logger.warning("Promotion %s dropped at commit: %s", promotion.code, exc)
            reason = (
                IneligibilityReason.ALREADY_REDEEMED
                if isinstance(exc, PersistenceConflictError)
                else IneligibilityReason.OUT_OF_STOCK
            )
            outcome.warnings.append(
                PromotionIneligibleError(
                    request.promo_code or promotion.code,
                    reason.value,
                    f"Promotion {promotion.code} could not be redeemed: {exc}",
                )
            )
            outcome.discount = Decimal("0")
            return None

    def _record_redemption(
        self,
        request: BookingRequest,
        promotion: Promotion,
        eligibility: Optional[EligibilityResult],
        appointment: Appointment,
    ) -> Redemption:
        if eligibility is not None and eligibility.reserved_redemption is not None:
            return self._store.consume_redemption(eligibility.reserved_redemption.id, appointment.id)

        service_id = next(
            (
                line.service.id for line in request.lines
                if not promotion.applicable_service_ids
                or line.service.id in promotion.applicable_service_ids
            ),
            None,
        )
        return self._store.create_redemption(
            RedemptionDraft(
                user_id=request.client.id,
                promotion_id=promotion.id,
                appointment_id=appointment.id,
                service_id=service_id,
            )
        )

    def _rollback(
        self,
        appointments: Sequence[Appointment],
        courses: Sequence[TreatmentCourse],
    ) -> None:
        for course in courses:
            try:
                self._store.delete_treatment_course(course.id)
            except BookingStoreError as exc:
                logger.error("Could not roll back course %s: %s", course.id, exc)

        for appointment in reversed(appointments):
            try:
                self._store.delete_appointment(appointment.id)
            except BookingStoreError as exc:
                logger.error("Could not roll back appointment %s: %s", appointment.id, exc)

        if appointments or courses:
            logger.info(
                "Rolled back %d appointment(s) and %d course(s)",
                len(appointments),
                len(courses),
            )

    def _create_appointment(self, draft: AppointmentDraft) -> Appointment:
        """Insert one appointment, reporting a store-level clash as a slot conflict."""
        try:
            return self._store.create_appointment(draft)
        except PersistenceConflictError as exc:
            raise SlotConflictError(
                draft.date,
                draft.time,
                draft.service_id,
                message=f"The slot was taken while booking: {exc}",
            ) from exc

    @staticmethod
    def _reject(outcome: BookingOutcome, reason: RejectionReason) -> BookingOutcome:
        outcome.state = BookingState.REJECTED
        outcome.rejection = reason
        return outcome
