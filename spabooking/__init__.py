"""
Spa booking core: slot checks, treatment courses, promotions and bookings.
"""

__version__ = "0.1.0"
