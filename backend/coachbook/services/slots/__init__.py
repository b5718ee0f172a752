# backend/coachbook/services/slots/__init__.py
"""
Slots calculation module.

Grid: half-hour slots from the weekday template (calculator.py)
Busy: external calendar intervals per source (busy.py)
Availability: grid minus busy, cached per date (availability.py, cache.py)
"""

from .config import BookingConfig, get_booking_config
from .calculator import DayTemplate, generate_slots
from .busy import BusyInterval, BusyIntervalMerger, BusySnapshot
from .availability import DayAvailability, SlotView, compute_day_availability
from .cache import AvailabilityCache, PreloadResult
from .redis_store import AvailabilityRedisStore

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "DayTemplate",
    "generate_slots",
    "BusyInterval",
    "BusyIntervalMerger",
    "BusySnapshot",
    "DayAvailability",
    "SlotView",
    "compute_day_availability",
    "AvailabilityCache",
    "PreloadResult",
    "AvailabilityRedisStore",
]
