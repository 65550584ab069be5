"""
Smart therapist assignment for "any therapist" bookings.
"""

import logging
from typing import Dict, Iterable, Optional

from .models import Service, TherapistCandidate

logger = logging.getLogger(__name__)


STAFF_TIER_BONUS: Dict[str, int] = {
    "expert": 20,
    "proficient": 10,
}


class TherapistAssigner:
    """
    Scores therapists who are free at the requested time.

    Score = repeat-visit bonus (100 + 10 per completed visit with this client)
          + workload bonus (50 - 10 per booking that day, floored at 0)
          + staff tier bonus.
    Candidates without a specialty matching the service category are skipped.
    Ties keep the order the store returned the candidates in.
    """

    def pick(
        self,
        service: Service,
        candidates: Iterable[TherapistCandidate],
    ) -> Optional[TherapistCandidate]:
        eligible = [c for c in candidates if self._has_specialty(c, service)]

        if not eligible:
            logger.info("No eligible therapist for service %s", service.id)
            return None

        if len(eligible) == 1:
            return eligible[0]

        scored = [(self.score(candidate), candidate) for candidate in eligible]
        logger.debug(
            "Therapist scores for %s: %s",
            service.id,
            [(c.id, s) for s, c in scored],
        )

        best_score = max(score for score, _ in scored)
        return next(candidate for score, candidate in scored if score == best_score)

    @staticmethod
    def score(candidate: TherapistCandidate) -> int:
        score = 0

        if candidate.completed_with_client > 0:
            score += 100 + candidate.completed_with_client * 10

        score += max(0, 50 - candidate.bookings_that_day * 10)

        if candidate.staff_tier:
            score += STAFF_TIER_BONUS.get(candidate.staff_tier.lower(), 0)

        return score

    @staticmethod
    def _has_specialty(candidate: TherapistCandidate, service: Service) -> bool:
        if not service.category:
            return True
        category = service.category.lower()
        return any(category in specialty.lower() for specialty in candidate.specialties)
