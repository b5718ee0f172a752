# backend/coachbook/services/slots/cache.py
"""
Server-side availability cache.

One entry per date, replaced as a whole on every write. Entries expire
after cache_ttl_seconds; a day computed while a calendar source was down
is kept only for degraded_cache_ttl_seconds so it heals quickly.

The commit path never reads from here (see services/booking.py).
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Iterable, Protocol

from sqlalchemy.orm import Session

from .availability import DayAvailability, compute_day_availability
from .busy import BusyIntervalMerger
from .calculator import load_blocked_dates, load_day_templates
from .config import BookingConfig, get_booking_config

logger = logging.getLogger(__name__)


class AvailabilityStore(Protocol):
    def get(self, dt: date) -> DayAvailability | None: ...

    def put_many(self, entries: list[tuple[DayAvailability, int]]) -> None: ...

    def ttl(self, dt: date) -> int | None: ...

    def delete(self, dates: list[date] | None = None) -> int: ...


@dataclass(frozen=True)
class PreloadResult:
    days_loaded: int
    expires_in: int


class AvailabilityCache:
    def __init__(
        self,
        store: AvailabilityStore,
        merger: BusyIntervalMerger,
        config: BookingConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.merger = merger
        self.config = config or get_booking_config()
        self.clock = clock

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, db: Session, day: date, today: date | None = None) -> tuple[DayAvailability, bool]:
        """
        Availability for one date.

        With `today` given, a date outside the booking horizon comes back
        as an empty day without touching the store or the calendars.

        Returns:
            (entry, cached); cached is False when the day was computed now
        """
        if today is not None and not self.in_horizon(day, today):
            return self.closed_day(day), False

        entry = self.store.get(day)
        if entry is not None:
            return entry, True

        logger.info(f"Availability cache miss for {day}")
        return self._compute_and_store(db, [day])[day], False

    def get_many(
        self,
        db: Session,
        days: Iterable[date],
        today: date | None = None,
    ) -> dict[date, tuple[DayAvailability, bool]]:
        """
        Availability for several dates, as {date: (entry, cached)}.

        Missing days are computed together from a single calendar query
        covering their span. With `today` given, dates outside the booking
        horizon are returned empty, so the span never exceeds the horizon.
        """
        days = sorted(set(days))
        result: dict[date, tuple[DayAvailability, bool]] = {}
        missing: list[date] = []

        for day in days:
            if today is not None and not self.in_horizon(day, today):
                result[day] = (self.closed_day(day), False)
                continue
            entry = self.store.get(day)
            if entry is None:
                missing.append(day)
            else:
                result[day] = (entry, True)

        if missing:
            logger.info(f"Availability cache miss for {len(missing)} of {len(days)} days")
            for day, entry in self._compute_and_store(db, missing).items():
                result[day] = (entry, False)

        return result

    def in_horizon(self, day: date, today: date) -> bool:
        first, last = self.config.horizon(today)
        return first <= day <= last

    def closed_day(self, day: date) -> DayAvailability:
        """Empty entry for a date nobody can book; never stored."""
        return DayAvailability(
            date=day,
            slots=(),
            timezone=self.config.timezone,
            computed_at=self.clock(),
        )

    # ── Write ────────────────────────────────────────────────────────────

    def preload(self, db: Session, today: date) -> PreloadResult:
        """Compute and store the whole booking horizon [tomorrow, today + horizon]."""
        first, last = self.config.horizon(today)
        days = [first + timedelta(days=i) for i in range((last - first).days + 1)]

        computed = self._compute_and_store(db, days)
        degraded = any(entry.degraded for entry in computed.values())
        expires_in = (
            self.config.degraded_cache_ttl_seconds if degraded else self.config.cache_ttl_seconds
        )

        logger.info(f"Preloaded availability for {len(computed)} days ({first} → {last})")
        return PreloadResult(days_loaded=len(computed), expires_in=expires_in)

    def refresh(self, db: Session, day: date, today: date | None = None) -> DayAvailability:
        """Discard and recompute one date (an empty day outside the horizon)."""
        if today is not None and not self.in_horizon(day, today):
            return self.closed_day(day)
        self.store.delete([day])
        return self._compute_and_store(db, [day])[day]

    def invalidate(self, day: date) -> None:
        """Discard one date; the next read recomputes it."""
        self.store.delete([day])
        logger.info(f"Invalidated availability cache for {day}")

    # ── Helpers ──────────────────────────────────────────────────────────

    def ttl_for(self, entry: DayAvailability) -> int:
        if entry.degraded:
            return self.config.degraded_cache_ttl_seconds
        return self.config.cache_ttl_seconds

    def _compute_and_store(self, db: Session, days: list[date]) -> dict[date, DayAvailability]:
        first, last = min(days), max(days)
        templates = load_day_templates(db)
        blocked = load_blocked_dates(db, first, last)

        time_min, time_max = self.config.day_bounds(first, last)
        snapshot = self.merger.fetch(time_min, time_max, fail_closed=False)

        computed_at = self.clock()
        entries: dict[date, DayAvailability] = {}
        for day in days:
            day_min, day_max = self.config.day_bounds(day, day)
            entries[day] = compute_day_availability(
                day,
                templates.get(day.weekday()),
                blocked,
                snapshot.for_range(day_min, day_max),
                computed_at,
                self.config,
            )

        self.store.put_many([(entry, self.ttl_for(entry)) for entry in entries.values()])
        return entries
