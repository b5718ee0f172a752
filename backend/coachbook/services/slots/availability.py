# backend/coachbook/services/slots/availability.py
"""
Day availability: slot grid minus external calendar busy time.

Takes into account:
- Slot grid (availability template, blocked dates)
- Busy intervals of every calendar source (logical OR)
- Free overrides ("<name> is free" events)

For each open slot it exposes which session durations can start there
(a 60-minute session needs the following half-hour free as well).
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Collection

from .busy import BusySnapshot
from .calculator import DayTemplate, generate_slots, slot_covered
from .config import BookingConfig, get_booking_config


@dataclass(frozen=True)
class SlotView:
    time: str  # "HH:MM"
    can_book: dict[int, bool] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: dict = {"time": self.time}
        for duration, allowed in sorted(self.can_book.items()):
            data[f"can_book_{duration}"] = allowed
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SlotView":
        can_book = {
            int(key.removeprefix("can_book_")): bool(value)
            for key, value in data.items()
            if key.startswith("can_book_")
        }
        return cls(time=data["time"], can_book=can_book)


@dataclass(frozen=True)
class DayAvailability:
    date: date
    slots: tuple[SlotView, ...]
    timezone: str
    computed_at: float
    degraded: bool = False

    @property
    def times(self) -> list[str]:
        return [slot.time for slot in self.slots]

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "slots": [slot.to_dict() for slot in self.slots],
            "timezone": self.timezone,
            "computed_at": self.computed_at,
            "degraded": self.degraded,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DayAvailability":
        return cls(
            date=date.fromisoformat(data["date"]),
            slots=tuple(SlotView.from_dict(s) for s in data.get("slots", [])),
            timezone=data["timezone"],
            computed_at=float(data["computed_at"]),
            degraded=bool(data.get("degraded", False)),
        )


def free_cells(
    target_date: date,
    grid: list[str],
    snapshot: BusySnapshot,
    config: BookingConfig,
) -> list[str]:
    """Grid cells of `target_date` that no calendar source marks busy."""
    step = timedelta(minutes=config.slot_step_minutes)
    result = []
    for time_str in grid:
        start = config.local_datetime(target_date, time_str)
        if not snapshot.is_busy(start, start + step):
            result.append(time_str)
    return result


def compute_day_availability(
    target_date: date,
    template: DayTemplate | None,
    blocked_dates: Collection[date],
    snapshot: BusySnapshot,
    computed_at: float,
    config: BookingConfig | None = None,
) -> DayAvailability:
    """
    Calculate bookable slots for one date.

    Pure: no I/O, the snapshot must already cover the date.
    """
    config = config or get_booking_config()

    grid = generate_slots(target_date, template, blocked_dates, config)
    free = free_cells(target_date, grid, snapshot, config)
    free_set = set(free)

    slots = []
    for time_str in free:
        can_book = {
            duration: slot_covered(time_str, duration, free_set, config)
            for duration in config.duration_classes
        }
        if can_book[config.min_duration]:
            slots.append(SlotView(time=time_str, can_book=can_book))

    return DayAvailability(
        date=target_date,
        slots=tuple(slots),
        timezone=config.timezone,
        computed_at=computed_at,
        degraded=snapshot.degraded,
    )
