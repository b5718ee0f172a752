# backend/coachbook/services/slots/config.py
"""
Booking configuration for slots calculation.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from ...config import settings, split_patterns


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for booking/slots system.

    Attributes:
        horizon_days: Last bookable day is today + horizon_days
        slot_step_minutes: Base grid step in minutes (15/30/60)
        duration_classes: Session lengths credits are sold in
        cache_ttl_seconds: TTL of a computed availability day
        degraded_cache_ttl_seconds: TTL when a calendar source failed
        timezone: Business timezone all "HH:MM" strings are local to
    """
    horizon_days: int = 28
    slot_step_minutes: int = 30
    duration_classes: tuple[int, ...] = (30, 60)
    cache_ttl_seconds: int = 900
    degraded_cache_ttl_seconds: int = 60
    slot_lock_ttl_seconds: int = 60
    ledger_max_retries: int = 3
    compensation_attempts: int = 5
    timezone: str = "America/Chicago"
    ignored_event_patterns: tuple[str, ...] = (r"^week\s*\d*", r"^week$")
    free_override_patterns: tuple[str, ...] = (r"\bis\s+free\b",)

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_step_minutes not in (15, 30, 60):
            raise ValueError(f"slot_step_minutes must be 15, 30, or 60, got {self.slot_step_minutes}")
        for duration in self.duration_classes:
            if duration <= 0 or duration % self.slot_step_minutes:
                raise ValueError(
                    f"duration class {duration} is not a multiple of {self.slot_step_minutes}"
                )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def min_duration(self) -> int:
        return min(self.duration_classes)

    def cells_for(self, duration: int) -> int:
        """Number of grid cells a session of `duration` minutes covers."""
        return duration // self.slot_step_minutes

    def today(self, now: datetime) -> date:
        """Calendar date of `now` in the business timezone."""
        return now.astimezone(self.tz).date()

    def horizon(self, today: date) -> tuple[date, date]:
        """Bookable window: [tomorrow, today + horizon_days]."""
        return today + timedelta(days=1), today + timedelta(days=self.horizon_days)

    def local_datetime(self, day: date, time_str: str) -> datetime:
        """Aware datetime for "HH:MM" on `day` in the business timezone."""
        minutes = time_str_to_minutes(time_str)
        naive = datetime.combine(day, time.min) + timedelta(minutes=minutes)
        return naive.replace(tzinfo=self.tz)

    def day_bounds(self, first: date, last: date) -> tuple[datetime, datetime]:
        """[start of `first`, start of the day after `last`) as aware datetimes."""
        start = datetime.combine(first, time.min).replace(tzinfo=self.tz)
        end = datetime.combine(last + timedelta(days=1), time.min).replace(tzinfo=self.tz)
        return start, end


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hours, minutes = value.strip().split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time_str(total: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{total // 60:02d}:{total % 60:02d}"


@lru_cache
def get_booking_config() -> BookingConfig:
    """Booking configuration built from application settings (singleton)."""
    return BookingConfig(
        horizon_days=settings.booking_horizon_days,
        slot_step_minutes=settings.slot_step_minutes,
        duration_classes=tuple(
            int(d) for d in settings.duration_classes.split(",") if d.strip()
        ),
        cache_ttl_seconds=settings.availability_cache_ttl_seconds,
        degraded_cache_ttl_seconds=settings.degraded_cache_ttl_seconds,
        slot_lock_ttl_seconds=settings.slot_lock_ttl_seconds,
        ledger_max_retries=settings.ledger_max_retries,
        compensation_attempts=settings.compensation_attempts,
        timezone=settings.business_timezone,
        ignored_event_patterns=split_patterns(settings.ignored_event_patterns),
        free_override_patterns=split_patterns(settings.free_override_patterns),
    )
