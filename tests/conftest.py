"""Shared fixtures: in-memory database, fake calendar, memory stores."""

from __future__ import annotations

import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coachbook.models import Availability, Base, Users
from coachbook.services.booking import BookingService
from coachbook.services.credits import CreditLedger
from coachbook.services.memory_stores import (
    MemoryAvailabilityStore,
    MemoryCompensationQueue,
    MemorySlotLockStore,
)
from coachbook.services.slots.busy import BusyIntervalMerger
from coachbook.services.slots.cache import AvailabilityCache
from coachbook.services.slots.config import BookingConfig
from tests.fakes.fake_calendar import FakeCalendar
from tests.helpers import NOW, SOURCES, FakeClock, RecordingNotifier

# ── Database ─────────────────────────────────────────────────────────────


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def templates(db):
    """Weekdays 09:00-12:00, weekends closed."""
    for day in range(7):
        db.add(Availability(
            day_of_week=day,
            start_time="09:00",
            end_time="12:00",
            is_available=1 if day < 5 else 0,
        ))
    db.commit()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(purchases: list[dict] | None = None, email: str | None = None) -> Users:
        counter["n"] += 1
        n = counter["n"]
        user = Users(
            email=email or f"client{n}@example.com",
            google_id=f"google-{n}",
            name=f"Client {n}",
            purchases=json.dumps(purchases or []),
        )
        db.add(user)
        db.commit()
        return user

    return _make


# ── Booking core ─────────────────────────────────────────────────────────


@pytest.fixture
def config() -> BookingConfig:
    return BookingConfig()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar(bookings_calendar_id="bookings")


@pytest.fixture
def merger(calendar) -> BusyIntervalMerger:
    return BusyIntervalMerger(calendar, SOURCES, protected_sources=("bookings",))


@pytest.fixture
def store(clock) -> MemoryAvailabilityStore:
    return MemoryAvailabilityStore(clock=clock)


@pytest.fixture
def cache(store, merger, config, clock) -> AvailabilityCache:
    return AvailabilityCache(store, merger, config, clock=clock)


@pytest.fixture
def ledger(config) -> CreditLedger:
    return CreditLedger(config)


@pytest.fixture
def locks(clock) -> MemorySlotLockStore:
    return MemorySlotLockStore(clock=clock)


@pytest.fixture
def queue() -> MemoryCompensationQueue:
    return MemoryCompensationQueue()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(merger, cache, ledger, calendar, locks, queue, notifier, config) -> BookingService:
    return BookingService(
        merger=merger,
        cache=cache,
        ledger=ledger,
        calendar=calendar,
        locks=locks,
        compensations=queue,
        notifier=notifier,
        config=config,
        meet_link="https://meet.example.com/coach",
        now=lambda: NOW,
        sleep=lambda seconds: None,
    )
