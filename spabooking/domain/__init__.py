"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import Appointment, Audience, Cart, ClientProfile, Promotion, Service
from .promotions import EligibilityResult, PromotionEligibilityEvaluator
from .recurrence import RecurrenceGenerator
from .slot_checker import SlotAvailabilityChecker
from .therapist_assignment import TherapistAssigner

__all__ = [
    "Appointment",
    "Audience",
    "Cart",
    "ClientProfile",
    "EligibilityResult",
    "Promotion",
    "PromotionEligibilityEvaluator",
    "RecurrenceGenerator",
    "Service",
    "SlotAvailabilityChecker",
    "TherapistAssigner",
]
