"""
Domain models for appointments, treatment courses and promotions.
"""

import datetime as dt
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

from .tiers import tier_for_spend


MINUTES_PER_DAY = 24 * 60


def parse_time(value: str) -> dt.time:
    """Parse a wall-clock ``HH:MM`` string into a time object."""
    match = re.fullmatch(r"(\d{1,2}):(\d{2})(?::\d{2})?", value.strip())
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return dt.time(hour=hour, minute=minute)


def minutes_since_midnight(value: dt.time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(minutes: int) -> dt.time:
    """Inverse of ``minutes_since_midnight``; must stay within the same day."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes does not fall within a single day")
    return dt.time(hour=minutes // 60, minute=minutes % 60)


def weekday_index(day: dt.date) -> int:
    """Weekday index with 0=Sunday, 1=Monday ... 6=Saturday."""
    return (day.weekday() + 1) % 7


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    UPCOMING = "upcoming"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"


class CourseStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class AudienceKind(str, Enum):
    ALL = "all"
    NEW_CLIENTS = "new_clients"
    BIRTHDAY = "birthday"
    TIER = "tier"


# "VIP" predates numbered tiers and means the top tier.
VIP_TIER_LEVEL = 3


@dataclass(frozen=True)
class Audience:
    """
    Target audience of a promotion.

    A tagged variant: ``level`` is only set for ``AudienceKind.TIER``.
    """
    kind: AudienceKind
    level: Optional[int] = None

    def __post_init__(self):
        if self.kind is AudienceKind.TIER:
            if self.level is None or self.level < 1:
                raise ValueError("Tier audiences need a level of at least 1")
        elif self.level is not None:
            raise ValueError(f"Audience {self.kind.value} does not take a level")

    @classmethod
    def parse(cls, label: Optional[str]) -> "Audience":
        """
        Parse a stored audience label such as ``"New Clients"`` or ``"Tier Level 2"``.

        A missing label means ``All``.
        """
        if label is None or not label.strip():
            return ALL_AUDIENCE

        normalized = label.strip().lower()
        if normalized == "all":
            return ALL_AUDIENCE
        if normalized in ("new clients", "new_clients"):
            return cls(AudienceKind.NEW_CLIENTS)
        if normalized == "birthday":
            return cls(AudienceKind.BIRTHDAY)
        if normalized == "vip":
            return cls(AudienceKind.TIER, VIP_TIER_LEVEL)

        match = re.fullmatch(r"tier(?: level)?[ _]?(\d+)", normalized)
        if match:
            return cls(AudienceKind.TIER, int(match.group(1)))

        raise ValueError(f"Unknown promotion audience: '{label}'")

    @property
    def label(self) -> str:
        if self.kind is AudienceKind.TIER:
            return f"Tier Level {self.level}"
        return {
            AudienceKind.ALL: "All",
            AudienceKind.NEW_CLIENTS: "New Clients",
            AudienceKind.BIRTHDAY: "Birthday",
        }[self.kind]

    def __str__(self) -> str:
        return self.label


ALL_AUDIENCE = Audience(AudienceKind.ALL)


@dataclass(frozen=True)
class Service:
    id: str
    name: str
    duration_minutes: int
    price: Decimal
    discount_price: Optional[Decimal] = None
    category: Optional[str] = None

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise ValueError(f"Service {self.id} must have a positive duration")

    @property
    def effective_price(self) -> Decimal:
        """Price charged per session."""
        if self.discount_price is not None:
            return self.discount_price
        return self.price


@dataclass(frozen=True)
class ClientProfile:
    id: str
    name: str = ""
    birthday: Optional[dt.date] = None
    total_spent: Decimal = Decimal("0")

    @property
    def tier_level(self) -> int:
        return tier_for_spend(self.total_spent).level

    def has_birthday_on(self, day: dt.date) -> bool:
        if self.birthday is None:
            return False
        return (self.birthday.month, self.birthday.day) == (day.month, day.day)


@dataclass(frozen=True)
class Appointment:
    """
    A booked occupancy of one service.

    ``time`` is local wall-clock time with minute precision.
    """
    id: str
    service_id: str
    user_id: str
    date: dt.date
    time: dt.time
    duration_minutes: int
    status: AppointmentStatus = AppointmentStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    therapist_id: Optional[str] = None
    group_id: Optional[str] = None
    promotion_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: str = ""

    @property
    def start_minutes(self) -> int:
        return minutes_since_midnight(self.time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration_minutes

    @property
    def is_cancelled(self) -> bool:
        return self.status is AppointmentStatus.CANCELLED


@dataclass
class AppointmentDraft:
    """Fields sent to the store when an appointment is created."""
    service_id: str
    user_id: str
    date: dt.date
    time: dt.time
    duration_minutes: int
    therapist_id: Optional[str] = None
    group_id: Optional[str] = None
    promotion_id: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    notes: str = ""


@dataclass(frozen=True)
class CourseDefinition:
    """
    Recurrence rule for a treatment course.

    ``week_days`` uses 0=Sunday ... 6=Saturday. When it is empty the sessions
    are spaced by ``sessions_per_week`` (or ``weeks_per_session`` when set).
    """
    total_sessions: int
    session_time: dt.time
    start_date: dt.date
    sessions_per_week: int = 1
    week_days: Tuple[int, ...] = ()
    weeks_per_session: Optional[int] = None
    expiry_date: Optional[dt.date] = None


@dataclass(frozen=True)
class PlannedSession:
    sequence_number: int
    date: dt.date
    time: dt.time
    status: SessionStatus = SessionStatus.SCHEDULED
    past_expiry: bool = False
    appointment_id: Optional[str] = None


@dataclass
class TreatmentCourseDraft:
    service_id: str
    client_id: str
    total_sessions: int
    sessions_per_week: int
    session_time: dt.time
    session_duration_minutes: int
    start_date: dt.date
    expiry_date: dt.date
    week_days: Tuple[int, ...] = ()
    weeks_per_session: Optional[int] = None
    therapist_id: Optional[str] = None
    total_amount: Optional[Decimal] = None
    status: CourseStatus = CourseStatus.ACTIVE


@dataclass(frozen=True)
class TreatmentCourse:
    id: str
    service_id: str
    client_id: str
    total_sessions: int
    sessions_per_week: int
    session_time: dt.time
    session_duration_minutes: int
    start_date: dt.date
    expiry_date: dt.date
    week_days: Tuple[int, ...] = ()
    weeks_per_session: Optional[int] = None
    therapist_id: Optional[str] = None
    total_amount: Optional[Decimal] = None
    status: CourseStatus = CourseStatus.ACTIVE

    def definition(self) -> CourseDefinition:
        return CourseDefinition(
            total_sessions=self.total_sessions,
            session_time=self.session_time,
            start_date=self.start_date,
            sessions_per_week=self.sessions_per_week,
            week_days=self.week_days,
            weeks_per_session=self.weeks_per_session,
            expiry_date=self.expiry_date,
        )


@dataclass(frozen=True)
class Session:
    id: str
    course_id: str
    sequence_number: int
    date: dt.date
    time: dt.time
    status: SessionStatus = SessionStatus.SCHEDULED
    appointment_id: Optional[str] = None


@dataclass(frozen=True)
class Promotion:
    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    expiry_date: dt.date
    audience: Audience = ALL_AUDIENCE
    applicable_service_ids: FrozenSet[str] = frozenset()
    min_order_value: Decimal = Decimal("0")
    stock: Optional[int] = None
    points_required: Optional[int] = None
    is_public: bool = True
    is_active: bool = True
    title: str = ""

    @property
    def is_redeemed_with_points(self) -> bool:
        return not self.is_public and bool(self.points_required)


@dataclass(frozen=True)
class Redemption:
    """
    Usage record of a promotion by a user.

    ``appointment_id`` is ``None`` while the redemption is reserved but unused.
    ``promotion_audience`` is denormalized from the promotion for one-time rules.
    """
    id: str
    user_id: str
    promotion_id: str
    redeemed_at: dt.datetime
    appointment_id: Optional[str] = None
    promotion_audience: Optional[Audience] = None

    @property
    def is_consumed(self) -> bool:
        return self.appointment_id is not None


@dataclass
class RedemptionDraft:
    user_id: str
    promotion_id: str
    appointment_id: str
    service_id: Optional[str] = None


@dataclass(frozen=True)
class CartItem:
    service_id: str
    unit_price: Decimal
    quantity: int = 1

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Cart:
    items: List[CartItem] = field(default_factory=list)

    @property
    def service_ids(self) -> List[str]:
        return [item.service_id for item in self.items]

    @property
    def subtotal(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal("0"))

    def subtotal_for(self, service_ids: FrozenSet[str]) -> Decimal:
        """Subtotal of the lines whose service is in ``service_ids`` (all lines if empty)."""
        if not service_ids:
            return self.subtotal
        return sum(
            (item.amount for item in self.items if item.service_id in service_ids),
            Decimal("0"),
        )


@dataclass(frozen=True)
class TherapistCandidate:
    """A therapist free at the requested time, with the data used for scoring."""
    id: str
    name: str = ""
    specialties: Tuple[str, ...] = ()
    staff_tier: Optional[str] = None
    completed_with_client: int = 0
    bookings_that_day: int = 0
