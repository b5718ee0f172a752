"""
backend/coachbook/services/booking.py

Booking commit protocol.

    Selected → Validating → Committed | Rejected(reason)

commit() order:
    1. validate date/time/duration          (no I/O)
    2. booking horizon                      (no I/O)
    3. resolve user, short-circuit retries  (ledger read)
    4. lock slot cells                      (Redis)
    5. re-check grid + live calendar        (fail-closed)
    6. spend credit                         (conditional ledger write)
    7. create calendar event                (compensate on failure)
    8. invalidate cache, notify
    9. release locks                        (always)

The availability cache is only invalidated/refreshed from here, never
read: the decision to book is made on live calendar data.
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..errors import (
    CalendarWriteError,
    DuplicateBookingError,
    InvalidDateError,
    InvalidDurationError,
    InvalidTimeError,
    OutsideHorizonError,
    PastDateError,
    SameDayBookingError,
    SlotUnavailableError,
)
from .compensation import CompensationQueue, compensate_failed_booking, delete_event_quietly
from .credits import Booking, CreditLedger, get_user
from .events import booking_event_payload, emit_event
from .google_calendar import CALENDAR_ERRORS, CreatedEvent, event_id_for_booking
from .slot_locks import slot_lock_key
from .slots.busy import BusyIntervalMerger, CalendarGateway
from .slots.cache import AvailabilityCache
from .slots.calculator import cell_times, generate_day_from_db, slot_covered
from .slots.config import BookingConfig, get_booking_config, time_str_to_minutes

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^\d{2}:\d{2}$")


@dataclass(frozen=True)
class CommitResult:
    booking: Booking
    event_url: Optional[str] = None
    duplicate: bool = False


# ── Validation ───────────────────────────────────────────────────────────


def parse_date(value) -> date:
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise InvalidDateError()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidDateError()


def parse_time(value, config: BookingConfig) -> str:
    if not isinstance(value, str) or not TIME_RE.match(value):
        raise InvalidTimeError()
    hours, minutes = int(value[:2]), int(value[3:])
    if hours > 23 or minutes > 59:
        raise InvalidTimeError()
    if time_str_to_minutes(value) % config.slot_step_minutes:
        raise InvalidTimeError()
    return value


def parse_duration(value, config: BookingConfig) -> int:
    # bool is an int subclass; True must not pass as 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidDurationError()
    if value not in config.duration_classes:
        raise InvalidDurationError(
            f"Invalid session duration. Allowed: {', '.join(str(d) for d in config.duration_classes)} minutes."
        )
    return value


def check_horizon(day: date, today: date, config: BookingConfig) -> None:
    """Bookable window is [tomorrow, today + horizon_days] in business time."""
    first, last = config.horizon(today)
    if day == today:
        raise SameDayBookingError()
    if day < first:
        raise PastDateError()
    if day > last:
        raise OutsideHorizonError()


# ── Service ──────────────────────────────────────────────────────────────


class BookingService:
    def __init__(
        self,
        merger: BusyIntervalMerger,
        cache: AvailabilityCache,
        ledger: CreditLedger,
        calendar: CalendarGateway,
        locks,
        compensations: CompensationQueue,
        notifier: Callable[[str, dict], None] = emit_event,
        config: BookingConfig | None = None,
        meet_link: str = "",
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.merger = merger
        self.cache = cache
        self.ledger = ledger
        self.calendar = calendar
        self.locks = locks
        self.compensations = compensations
        self.notifier = notifier
        self.config = config or get_booking_config()
        self.meet_link = meet_link
        self.now = now
        self.sleep = sleep

    def today(self) -> date:
        return self.config.today(self.now())

    # ── Commit ───────────────────────────────────────────────────────────

    def commit(
        self,
        db: Session,
        principal,
        date_str,
        time_str,
        duration,
        idempotency_key: Optional[str] = None,
    ) -> CommitResult:
        """
        Book `duration` minutes at `date_str` `time_str` for the principal.

        A retry with the same idempotency key (or for a slot the user already
        holds) returns the existing booking with duplicate=True.

        Raises:
            ValidationError subclasses: Bad input or outside the booking horizon
            UserNotFoundError: Principal has no user row
            SlotUnavailableError: Slot busy, off-template or being booked right now
            CalendarUnavailableError: A calendar source could not be checked
            InsufficientCreditError: No credit of that duration left
            LedgerConflictError: Ledger write kept losing races
            CalendarWriteError: Event creation failed; the credit was given back
        """
        day = parse_date(date_str)
        time_str = parse_time(time_str, self.config)
        duration = parse_duration(duration, self.config)
        check_horizon(day, self.today(), self.config)

        user = get_user(db, principal)

        existing = self.ledger.find_confirmed(db, user.id, idempotency_key, day.isoformat(), time_str)
        if existing is not None:
            logger.info(f"Duplicate commit for user {user.id}: returning booking {existing.id}")
            return CommitResult(booking=existing, duplicate=True)

        cells = cell_times(time_str, duration, self.config)
        if not cells:
            self._reject_slot(db, day, "session would cross midnight")

        booking_id = str(uuid4())
        lock_keys = [slot_lock_key(day, cell) for cell in cells]
        if not self.locks.acquire(lock_keys, booking_id, self.config.slot_lock_ttl_seconds):
            self._reject_slot(db, day, "another commit holds the slot")

        try:
            self._recheck_slot(db, day, time_str, duration, cells)

            booking = Booking(
                id=booking_id,
                date=day.isoformat(),
                time=time_str,
                duration=duration,
                booked_at=self.now().isoformat(timespec="seconds"),
                calendar_event_id=event_id_for_booking(booking_id),
                idempotency_key=idempotency_key,
            )
            try:
                booking = self.ledger.spend(db, user.id, booking)
            except DuplicateBookingError as e:
                return CommitResult(booking=e.booking, duplicate=True)

            event = self._create_event(db, user, booking)

            self._invalidate_day(day)
            self.notifier("booking_committed", booking_event_payload(user, booking))

            logger.info(f"Booking {booking.id} committed: user {user.id}, {booking.date} {booking.time} ({duration} min)")
            return CommitResult(booking=booking, event_url=event.html_link)
        finally:
            self.locks.release(lock_keys, booking_id)

    def _recheck_slot(self, db: Session, day: date, time_str: str, duration: int, cells: list[str]) -> None:
        """Live re-validation of the slot against the template and every calendar."""
        grid = generate_day_from_db(db, day, self.config)
        if not slot_covered(time_str, duration, grid, self.config):
            self._reject_slot(db, day, "outside the availability template")

        start = self.config.local_datetime(day, time_str)
        end = start + timedelta(minutes=duration)
        snapshot = self.merger.fetch(start, end, fail_closed=True)

        step = timedelta(minutes=self.config.slot_step_minutes)
        for cell in cells:
            cell_start = self.config.local_datetime(day, cell)
            if snapshot.is_busy(cell_start, cell_start + step):
                self._reject_slot(db, day, f"busy at {cell}")

    def _reject_slot(self, db: Session, day: date, reason: str) -> None:
        logger.info(f"Slot on {day} rejected at commit: {reason}")
        try:
            self.cache.refresh(db, day)
        except Exception as e:
            logger.error(f"Failed to refresh availability for {day}: {e}")
        raise SlotUnavailableError()

    def _invalidate_day(self, day: date) -> None:
        # The booking is already written; a stale entry expires on its own
        try:
            self.cache.invalidate(day)
        except Exception as e:
            logger.error(f"Failed to invalidate availability for {day}: {e}")

    def _create_event(self, db: Session, user, booking: Booking) -> CreatedEvent:
        start = self.config.local_datetime(date.fromisoformat(booking.date), booking.time)
        end = start + timedelta(minutes=booking.duration)
        who = user.name or user.email

        try:
            return self.calendar.create_event(
                booking.calendar_event_id,
                start,
                end,
                summary=f"Coaching session: {who}",
                description=f"{booking.duration}-minute session booked by {who} <{user.email}>",
                location=self.meet_link or None,
            )
        except CALENDAR_ERRORS as e:
            logger.error(f"Calendar write failed for booking {booking.id}: {e}")
            compensate_failed_booking(
                db,
                self.ledger,
                self.calendar,
                self.compensations,
                user.id,
                booking.id,
                booking.calendar_event_id,
                self.config.compensation_attempts,
                sleep=self.sleep,
            )
            raise CalendarWriteError() from e

    # ── Cancel ───────────────────────────────────────────────────────────

    def cancel(self, db: Session, principal, booking_id: str) -> Booking:
        """
        Cancel a confirmed booking dated tomorrow or later.

        Repeating a cancel returns the cancelled booking without side effects.
        """
        user = get_user(db, principal)
        booking, changed = self.ledger.cancel(db, user.id, booking_id, self.today())
        if not changed:
            return booking

        delete_event_quietly(self.calendar, booking.calendar_event_id)
        self._invalidate_day(date.fromisoformat(booking.date))
        self.notifier("booking_cancelled", booking_event_payload(user, booking))
        return booking

    # ── Read ─────────────────────────────────────────────────────────────

    def booking_status(self, db: Session, principal, date_str, time_str) -> Optional[Booking]:
        """Confirmed booking of the principal at date/time, if any."""
        day = parse_date(date_str)
        time_str = parse_time(time_str, self.config)
        user = get_user(db, principal)
        return self.ledger.find_confirmed(db, user.id, None, day.isoformat(), time_str)

    def list_bookings(self, db: Session, principal) -> list[Booking]:
        user = get_user(db, principal)
        return self.ledger.bookings(db, user.id)
