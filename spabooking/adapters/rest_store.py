"""
Booking store that talks to the spa's REST API.
"""

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..config import ApiConfig
from ..domain.exceptions import BookingStoreError, PersistenceConflictError
from ..domain.models import (
    Appointment,
    AppointmentDraft,
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
from . import payloads

logger = logging.getLogger(__name__)


class RestBookingStore:
    """
    Client for the booking API.

    Every call is a JSON request under ``{base_url}/api``. A ``409 Conflict``
    answer to an insert means the slot was taken concurrently and is raised
    as ``PersistenceConflictError``; any other failure becomes
    ``BookingStoreError``.
    """

    def __init__(self, config: ApiConfig):
        """
        Initialize the API client.

        Args:
            config: Base URL, bearer token and request timeout
        """
        self.base_url = f"{config.base_url}/api"
        self.timeout = config.timeout_seconds
        self.headers = {"Content-Type": "application/json"}
        if config.token:
            self.headers["Authorization"] = f"Bearer {config.token}"

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Any] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, url)

        try:
            response = requests.request(
                method,
                url,
                headers=self.headers,
                params=params,
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise BookingStoreError(f"Booking API request failed: {e}") from e

        if response.status_code == 409:
            raise PersistenceConflictError(f"Booking API rejected {method} {path}: {response.text}")

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise BookingStoreError(f"Booking API request failed: {e}") from e

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise BookingStoreError(f"Booking API returned invalid JSON for {path}") from e

    def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        data = self._request("GET", path, params=params)
        if not isinstance(data, list):
            raise BookingStoreError(f"Expected a list from {path}, got {type(data).__name__}")
        return data

    def _get_object(self, path: str) -> Dict[str, Any]:
        data = self._request("GET", path)
        if not isinstance(data, dict):
            raise BookingStoreError(f"Expected an object from {path}")
        return data

    def _post_object(self, path: str, payload: Any) -> Dict[str, Any]:
        data = self._request("POST", path, payload=payload)
        if not isinstance(data, dict):
            raise BookingStoreError(f"Expected the created object from {path}")
        return data

    def get_service(self, service_id: str) -> Service:
        return payloads.parse_service(self._get_object(f"/services/{service_id}"))

    def get_client(self, user_id: str) -> ClientProfile:
        return payloads.parse_client(self._get_object(f"/users/{user_id}"))

    def fetch_bookings_for_actor(self, actor_id: str, day: dt.date) -> List[Appointment]:
        items = self._get_list(
            "/appointments",
            params={"actorId": actor_id, "date": day.isoformat()},
        )
        return [payloads.parse_appointment(item) for item in items]

    def fetch_appointments_for_user(self, user_id: str) -> List[Appointment]:
        items = self._get_list("/appointments", params={"userId": user_id})
        return [payloads.parse_appointment(item) for item in items]

    def fetch_promotion(self, code: str) -> Optional[Promotion]:
        items = self._get_list("/promotions", params={"code": code.strip()})
        if not items:
            return None
        return payloads.parse_promotion(items[0])

    def fetch_redemptions(self, user_id: str, promotion_id: Optional[str] = None) -> List[Redemption]:
        params = {"userId": user_id}
        if promotion_id is not None:
            params["promotionId"] = promotion_id
        items = self._get_list("/promotion-usages", params=params)
        return [payloads.parse_redemption(item) for item in items]

    def fetch_therapist_candidates(
        self,
        service_id: str,
        client_id: str,
        day: dt.date,
        start: dt.time,
        duration_minutes: int,
    ) -> List[TherapistCandidate]:
        items = self._get_list(
            "/therapists/available",
            params={
                "serviceId": service_id,
                "clientId": client_id,
                "date": day.isoformat(),
                "time": start.strftime("%H:%M"),
                "duration": duration_minutes,
            },
        )
        return [payloads.parse_therapist_candidate(item) for item in items]

    def create_appointment(self, draft: AppointmentDraft) -> Appointment:
        data = self._post_object("/appointments", payloads.dump_appointment_draft(draft))
        return payloads.parse_appointment(data)

    def delete_appointment(self, appointment_id: str) -> None:
        self._request("DELETE", f"/appointments/{appointment_id}")

    def create_treatment_course(self, draft: TreatmentCourseDraft) -> TreatmentCourse:
        data = self._post_object("/treatment-courses", payloads.dump_course_draft(draft))
        return payloads.parse_course(data)

    def delete_treatment_course(self, course_id: str) -> None:
        self._request("DELETE", f"/treatment-courses/{course_id}")

    def create_sessions(self, course_id: str, sessions: Sequence[PlannedSession]) -> List[Session]:
        data = self._request(
            "POST",
            f"/treatment-courses/{course_id}/sessions",
            payload=[payloads.dump_planned_session(s) for s in sessions],
        )
        if not isinstance(data, list):
            raise BookingStoreError("Expected the created sessions from the booking API")
        return [payloads.parse_session(item) for item in data]

    def create_redemption(self, draft: RedemptionDraft) -> Redemption:
        data = self._post_object("/promotion-usages", payloads.dump_redemption_draft(draft))
        return payloads.parse_redemption(data)

    def consume_redemption(self, redemption_id: str, appointment_id: str) -> Redemption:
        data = self._request(
            "PATCH",
            f"/promotion-usages/{redemption_id}",
            payload={"appointmentId": appointment_id},
        )
        if not isinstance(data, dict):
            raise BookingStoreError("Expected the updated redemption from the booking API")
        return payloads.parse_redemption(data)

