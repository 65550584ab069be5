"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .booking import (
    BookingLine,
    BookingOrchestrator,
    BookingOutcome,
    BookingRequest,
    BookingState,
    BookingStoreProtocol,
    RejectionReason,
)

__all__ = [
    "BookingLine",
    "BookingOrchestrator",
    "BookingOutcome",
    "BookingRequest",
    "BookingState",
    "BookingStoreProtocol",
    "RejectionReason",
]
