# backend/coachbook/services/slots/calculator.py
"""
Slot grid generation.

Produces the canonical ordered "HH:MM" start times for a date from the
day-of-week availability template, before any busy time is subtracted.

Contains:
✓ availability template for the weekday
✓ blocked dates

Does NOT contain:
✗ External calendar busy time (see busy.py)
✗ Booking horizon (filtered by callers)
"""

from dataclasses import dataclass
from datetime import date
from typing import Collection

from sqlalchemy.orm import Session

from .config import BookingConfig, get_booking_config, time_str_to_minutes, minutes_to_time_str


@dataclass(frozen=True)
class DayTemplate:
    day_of_week: int  # 0 = Monday
    start_time: str
    end_time: str
    is_available: bool = True


def generate_slots(
    target_date: date,
    template: DayTemplate | None,
    blocked_dates: Collection[date] = (),
    config: BookingConfig | None = None,
) -> list[str]:
    """
    Generate the slot grid for one date.

    Every slot [t, t + step) lies fully inside [start_time, end_time).
    A start that is not on the grid is rounded up to the next grid line.

    Returns:
        Ordered list of "HH:MM". Empty list = no slots.
    """
    config = config or get_booking_config()

    if target_date in blocked_dates:
        return []
    if template is None or not template.is_available:
        return []

    step = config.slot_step_minutes
    start_min = time_str_to_minutes(template.start_time)
    end_min = time_str_to_minutes(template.end_time)

    # Align to the grid
    t = -(-start_min // step) * step

    slots: list[str] = []
    while t + step <= end_min:
        slots.append(minutes_to_time_str(t))
        t += step

    return slots


def slot_covered(
    time_str: str,
    duration: int,
    grid: Collection[str],
    config: BookingConfig | None = None,
) -> bool:
    """True if every grid cell of [time_str, time_str + duration) is in `grid`."""
    config = config or get_booking_config()
    cells = cell_times(time_str, duration, config)
    return bool(cells) and all(t in grid for t in cells)


def cell_times(time_str: str, duration: int, config: BookingConfig) -> list[str]:
    """
    Grid cells a session starting at `time_str` occupies.

    Returns empty list if the session would cross midnight.
    """
    step = config.slot_step_minutes
    start_min = time_str_to_minutes(time_str)
    result = []
    for i in range(config.cells_for(duration)):
        t = start_min + i * step
        if t >= 24 * 60:
            return []
        result.append(minutes_to_time_str(t))
    return result


# ── Database helpers ─────────────────────────────────────────────────────


def load_day_templates(db: Session) -> dict[int, DayTemplate]:
    """All availability templates keyed by day_of_week."""
    from ...models import Availability

    rows = db.query(Availability).all()
    return {
        row.day_of_week: DayTemplate(
            day_of_week=row.day_of_week,
            start_time=row.start_time,
            end_time=row.end_time,
            is_available=bool(row.is_available),
        )
        for row in rows
    }


def load_blocked_dates(db: Session, date_start: date, date_end: date) -> set[date]:
    """Blocked dates within [date_start, date_end]."""
    from ...models import BlockedDates

    rows = (
        db.query(BlockedDates)
        .filter(
            BlockedDates.blocked_date >= date_start.isoformat(),
            BlockedDates.blocked_date <= date_end.isoformat(),
        )
        .all()
    )
    return {date.fromisoformat(row.blocked_date) for row in rows}


def generate_day_from_db(
    db: Session,
    target_date: date,
    config: BookingConfig | None = None,
) -> list[str]:
    """Slot grid for one date, reading template and blocked dates."""
    templates = load_day_templates(db)
    blocked = load_blocked_dates(db, target_date, target_date)
    return generate_slots(target_date, templates.get(target_date.weekday()), blocked, config)
