# backend/coachbook/routers/availability.py
"""
Availability API endpoints.

GET  /availability          - Bookable slots for one date (cache-backed)
GET  /availability/range    - Several dates at once
POST /availability/preload  - Warm the cache for the whole booking horizon
POST /availability/refresh  - Recompute one date, bypassing the cache
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_availability_cache, get_today
from ..errors import ValidationError
from ..schemas.availability import (
    AvailabilityRangeResponse,
    DayAvailabilityResponse,
    PreloadResponse,
)
from ..services.booking import parse_date
from ..services.slots import AvailabilityCache, DayAvailability, get_booking_config

router = APIRouter(prefix="/availability", tags=["availability"])

MAX_RANGE_DAYS = 62


def _day_response(entry: DayAvailability, cached: bool) -> DayAvailabilityResponse:
    return DayAvailabilityResponse(**entry.to_dict(), cached=cached)


@router.get("", response_model=DayAvailabilityResponse)
def get_availability(
    target_date: str = Query(..., alias="date"),
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
    today: date = Depends(get_today),
):
    """Bookable slots for a date; served from cache when fresh. Empty outside the booking horizon."""
    day = parse_date(target_date)
    entry, cached = cache.get(db, day, today=today)
    return _day_response(entry, cached)


@router.get("/range", response_model=AvailabilityRangeResponse)
def get_availability_range(
    dates: str = Query(..., description="Comma-separated YYYY-MM-DD dates"),
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
    today: date = Depends(get_today),
):
    days = [parse_date(d.strip()) for d in dates.split(",") if d.strip()]
    if not days:
        raise ValidationError("At least one date required.")
    if len(set(days)) > MAX_RANGE_DAYS:
        raise ValidationError(f"At most {MAX_RANGE_DAYS} dates per request.")

    entries = cache.get_many(db, days, today=today)

    return AvailabilityRangeResponse(
        availability={
            day.isoformat(): _day_response(entry, cached)
            for day, (entry, cached) in entries.items()
        },
        timezone=get_booking_config().timezone,
    )


@router.post("/preload", response_model=PreloadResponse)
def preload_availability(
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
    today: date = Depends(get_today),
):
    """Compute every day of the booking horizon with one calendar query per source."""
    return cache.preload(db, today)


@router.post("/refresh", response_model=DayAvailabilityResponse)
def refresh_availability(
    target_date: str = Query(..., alias="date"),
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
    today: date = Depends(get_today),
):
    day = parse_date(target_date)
    entry = cache.refresh(db, day, today=today)
    return _day_response(entry, cached=False)
