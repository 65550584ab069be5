"""
Conversion between booking API JSON payloads and domain models.

Payloads use the camelCase field names of the booking API. Dates are
``YYYY-MM-DD`` strings and times ``HH:MM`` strings.
"""

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import pendulum

from ..domain.exceptions import BookingStoreError
from ..domain.models import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    Audience,
    ClientProfile,
    CourseStatus,
    DiscountType,
    PaymentStatus,
    PlannedSession,
    Promotion,
    Redemption,
    RedemptionDraft,
    Service,
    Session,
    SessionStatus,
    TherapistCandidate,
    TreatmentCourse,
    TreatmentCourseDraft,
    parse_time,
)


def parse_date(value: Any) -> dt.date:
    """Parse a ``YYYY-MM-DD`` (or full ISO timestamp) string to a date."""
    if isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        return value
    try:
        return pendulum.parse(str(value)).date()
    except ValueError as exc:
        raise BookingStoreError(f"Could not parse date: {value!r}") from exc


def parse_datetime(value: Any) -> dt.datetime:
    try:
        parsed = pendulum.parse(str(value))
    except ValueError as exc:
        raise BookingStoreError(f"Could not parse datetime: {value!r}") from exc
    if not isinstance(parsed, dt.datetime):
        raise BookingStoreError(f"Could not parse datetime: {value!r}")
    return parsed


def _time(value: Any) -> dt.time:
    try:
        return parse_time(str(value))
    except ValueError as exc:
        raise BookingStoreError(str(exc)) from exc


def _money(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise BookingStoreError(f"Could not parse amount: {value!r}") from exc


def _optional_date(value: Any) -> Optional[dt.date]:
    return parse_date(value) if value else None


def _format_time(value: dt.time) -> str:
    return value.strftime("%H:%M")


def _format_money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def parse_service(data: Dict[str, Any]) -> Service:
    try:
        return Service(
            id=data["id"],
            name=data.get("name", ""),
            duration_minutes=int(data["duration"]),
            price=_money(data.get("price")) or Decimal("0"),
            discount_price=_money(data.get("discountPrice")),
            category=data.get("category"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise BookingStoreError(f"Malformed service payload: {exc}") from exc


def parse_client(data: Dict[str, Any]) -> ClientProfile:
    try:
        return ClientProfile(
            id=data["id"],
            name=data.get("name", ""),
            birthday=_optional_date(data.get("birthday")),
            total_spent=_money(data.get("totalSpent")) or Decimal("0"),
        )
    except KeyError as exc:
        raise BookingStoreError(f"Malformed user payload: missing {exc}") from exc


def parse_appointment(data: Dict[str, Any]) -> Appointment:
    try:
        return Appointment(
            id=data["id"],
            service_id=data["serviceId"],
            user_id=data["userId"],
            date=parse_date(data["date"]),
            time=_time(data["time"]),
            duration_minutes=int(data.get("duration", 60)),
            status=AppointmentStatus(data.get("status", "pending")),
            payment_status=PaymentStatus(data.get("paymentStatus", "Unpaid")),
            therapist_id=data.get("therapistId"),
            group_id=data.get("bookingGroupId"),
            promotion_id=data.get("promotionId"),
            rejection_reason=data.get("rejectionReason"),
            notes=data.get("notes") or "",
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise BookingStoreError(f"Malformed appointment payload: {exc}") from exc


def dump_appointment_draft(draft: AppointmentDraft) -> Dict[str, Any]:
    return {
        "serviceId": draft.service_id,
        "userId": draft.user_id,
        "date": draft.date.isoformat(),
        "time": _format_time(draft.time),
        "duration": draft.duration_minutes,
        "therapistId": draft.therapist_id,
        "bookingGroupId": draft.group_id,
        "promotionId": draft.promotion_id,
        "status": draft.status.value,
        "paymentStatus": draft.payment_status.value,
        "notes": draft.notes,
    }


def parse_promotion(data: Dict[str, Any]) -> Promotion:
    try:
        stock = data.get("stock")
        points = data.get("pointsRequired")
        return Promotion(
            id=data["id"],
            code=data["code"],
            discount_type=DiscountType(data["discountType"]),
            discount_value=_money(data["discountValue"]) or Decimal("0"),
            expiry_date=parse_date(data["expiryDate"]),
            audience=Audience.parse(data.get("targetAudience")),
            applicable_service_ids=frozenset(data.get("applicableServiceIds") or []),
            min_order_value=_money(data.get("minOrderValue")) or Decimal("0"),
            stock=None if stock is None else int(stock),
            points_required=None if points is None else int(points),
            is_public=bool(data.get("isPublic", True)),
            is_active=bool(data.get("isActive", True)),
            title=data.get("title", ""),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise BookingStoreError(f"Malformed promotion payload: {exc}") from exc


def parse_redemption(data: Dict[str, Any]) -> Redemption:
    try:
        audience = data.get("targetAudience")
        return Redemption(
            id=data["id"],
            user_id=data["userId"],
            promotion_id=data["promotionId"],
            redeemed_at=parse_datetime(data["usedAt"]),
            appointment_id=data.get("appointmentId"),
            promotion_audience=Audience.parse(audience) if audience else None,
        )
    except (KeyError, ValueError) as exc:
        raise BookingStoreError(f"Malformed redemption payload: {exc}") from exc


def dump_redemption_draft(draft: RedemptionDraft) -> Dict[str, Any]:
    return {
        "userId": draft.user_id,
        "promotionId": draft.promotion_id,
        "appointmentId": draft.appointment_id,
        "serviceId": draft.service_id,
    }


def parse_therapist_candidate(data: Dict[str, Any]) -> TherapistCandidate:
    try:
        return TherapistCandidate(
            id=data["id"],
            name=data.get("name", ""),
            specialties=tuple(data.get("specialty") or ()),
            staff_tier=data.get("staffTier"),
            completed_with_client=int(data.get("completedWithClient", 0)),
            bookings_that_day=int(data.get("bookingsThatDay", 0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise BookingStoreError(f"Malformed therapist payload: {exc}") from exc


def parse_course(data: Dict[str, Any]) -> TreatmentCourse:
    try:
        weeks_per_session = data.get("weeksPerSession")
        return TreatmentCourse(
            id=data["id"],
            service_id=data["serviceId"],
            client_id=data["clientId"],
            total_sessions=int(data["totalSessions"]),
            sessions_per_week=int(data.get("sessionsPerWeek", 1)),
            session_time=_time(data["sessionTime"]),
            session_duration_minutes=int(data["sessionDuration"]),
            start_date=parse_date(data["startDate"]),
            expiry_date=parse_date(data["expiryDate"]),
            week_days=tuple(int(d) for d in data.get("weekDays") or ()),
            weeks_per_session=None if weeks_per_session is None else int(weeks_per_session),
            therapist_id=data.get("therapistId"),
            total_amount=_money(data.get("totalAmount")),
            status=CourseStatus(data.get("status", "active")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise BookingStoreError(f"Malformed treatment course payload: {exc}") from exc


def dump_course_draft(draft: TreatmentCourseDraft) -> Dict[str, Any]:
    return {
        "serviceId": draft.service_id,
        "clientId": draft.client_id,
        "totalSessions": draft.total_sessions,
        "sessionsPerWeek": draft.sessions_per_week,
        "weeksPerSession": draft.weeks_per_session,
        "weekDays": list(draft.week_days),
        "sessionTime": _format_time(draft.session_time),
        "sessionDuration": draft.session_duration_minutes,
        "startDate": draft.start_date.isoformat(),
        "expiryDate": draft.expiry_date.isoformat(),
        "therapistId": draft.therapist_id,
        "totalAmount": _format_money(draft.total_amount),
        "status": draft.status.value,
    }


def parse_session(data: Dict[str, Any]) -> Session:
    try:
        return Session(
            id=data["id"],
            course_id=data["treatmentCourseId"],
            sequence_number=int(data["sessionNumber"]),
            date=parse_date(data["sessionDate"]),
            time=_time(data["sessionTime"]),
            status=SessionStatus(data.get("status", "scheduled")),
            appointment_id=data.get("appointmentId"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise BookingStoreError(f"Malformed session payload: {exc}") from exc


def dump_planned_session(session: PlannedSession) -> Dict[str, Any]:
    return {
        "sessionNumber": session.sequence_number,
        "sessionDate": session.date.isoformat(),
        "sessionTime": _format_time(session.time),
        "status": session.status.value,
        "appointmentId": session.appointment_id,
    }
