# backend/coachbook/deps.py
"""
FastAPI dependencies wiring the booking core to its collaborators.

Stateless pieces are rebuilt per request; the calendar gateway and the
slot lock store are process singletons.
"""

from datetime import date, datetime, timezone
from functools import lru_cache

from fastapi import Depends

from .config import settings
from .redis_client import redis_client
from .services.booking import BookingService
from .services.compensation import RedisCompensationQueue
from .services.credits import CreditLedger
from .services.google_calendar import GoogleCalendarGateway
from .services.slot_locks import RedisSlotLockStore
from .services.slots import (
    AvailabilityCache,
    AvailabilityRedisStore,
    BusyIntervalMerger,
    get_booking_config,
)


@lru_cache
def get_calendar() -> GoogleCalendarGateway:
    """Raises CalendarNotConfiguredError until the service account is set up."""
    return GoogleCalendarGateway.from_settings(settings)


def get_merger(calendar: GoogleCalendarGateway = Depends(get_calendar)) -> BusyIntervalMerger:
    bookings_id = settings.google_bookings_calendar_id.strip()
    return BusyIntervalMerger(
        calendar,
        settings.calendar_source_ids,
        protected_sources=(bookings_id,) if bookings_id else (),
    )


def get_availability_cache(merger: BusyIntervalMerger = Depends(get_merger)) -> AvailabilityCache:
    return AvailabilityCache(AvailabilityRedisStore(redis_client), merger)


def get_ledger() -> CreditLedger:
    return CreditLedger()


@lru_cache
def get_slot_locks() -> RedisSlotLockStore:
    return RedisSlotLockStore(redis_client)


def get_compensation_queue() -> RedisCompensationQueue:
    return RedisCompensationQueue(redis_client)


def get_today() -> date:
    """Today in the business timezone."""
    return get_booking_config().today(datetime.now(timezone.utc))


def get_booking_service(
    calendar: GoogleCalendarGateway = Depends(get_calendar),
    merger: BusyIntervalMerger = Depends(get_merger),
    cache: AvailabilityCache = Depends(get_availability_cache),
    ledger: CreditLedger = Depends(get_ledger),
    locks: RedisSlotLockStore = Depends(get_slot_locks),
    compensations: RedisCompensationQueue = Depends(get_compensation_queue),
) -> BookingService:
    return BookingService(
        merger=merger,
        cache=cache,
        ledger=ledger,
        calendar=calendar,
        locks=locks,
        compensations=compensations,
        meet_link=settings.meet_link,
    )
