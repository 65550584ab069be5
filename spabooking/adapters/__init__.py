"""
Adapters layer - Booking store implementations (REST API and in-memory fixture).
"""

from .memory_store import InMemoryBookingStore
from .rest_store import RestBookingStore

__all__ = ["InMemoryBookingStore", "RestBookingStore"]
