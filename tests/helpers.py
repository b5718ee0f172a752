"""Constants and small builders shared by the test modules."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from coachbook.auth import Principal
from coachbook.models import Users

TZ = ZoneInfo("America/Chicago")

# Wednesday afternoon, business time. Tomorrow (Thursday) is the first bookable day.
NOW = datetime(2026, 6, 3, 15, 0, tzinfo=TZ)
TODAY = date(2026, 6, 3)
TOMORROW = date(2026, 6, 4)
MONDAY = date(2026, 6, 8)

SOURCES = ["primary", "bookings"]


class FakeClock:
    """Monotonic float clock driven by the test."""

    def __init__(self, start: float = 1_780_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def __call__(self, event_type: str, payload: dict) -> None:
        self.events.append((event_type, payload))

    @property
    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


def local(day: date, time_str: str) -> datetime:
    hours, minutes = (int(p) for p in time_str.split(":"))
    return datetime(day.year, day.month, day.day, tzinfo=TZ) + timedelta(hours=hours, minutes=minutes)


def purchase(
    pid: str = "p1",
    duration: int = 30,
    total: int = 1,
    used: int = 0,
    status: str = "active",
    purchase_date: str = "2026-05-01T00:00:00+00:00",
    **extra,
) -> dict:
    data = {
        "id": pid,
        "package_id": f"pkg-{duration}",
        "duration_minutes": duration,
        "sessions_total": total,
        "sessions_used": used,
        "status": status,
        "purchase_date": purchase_date,
        "payment_id": f"pay-{pid}",
        "bookings": [],
    }
    data.update(extra)
    return data


def principal_for(user: Users) -> Principal:
    return Principal(subject=user.google_id, email=user.email, name=user.name)
