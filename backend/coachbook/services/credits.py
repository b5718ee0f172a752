"""
backend/coachbook/services/credits.py

Credit ledger: session credits embedded in users.purchases (JSON).

Each purchase carries its own sessions_total/sessions_used counters and the
bookings that consumed them. Every write goes through
conditional_update_purchases(), which only succeeds if users.version is
still the version that was read; a lost race re-reads and retries.

Invariant per purchase: 0 <= sessions_used <= sessions_total.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional, TypeVar
from uuid import uuid4

from sqlalchemy.orm import Session

from ..errors import (
    BookingNotFoundError,
    DuplicateBookingError,
    InsufficientCreditError,
    InvalidDurationError,
    LedgerConflictError,
    TooLateToCancelError,
    UserNotFoundError,
    ValidationError,
)
from ..models import Users
from .slots.config import BookingConfig, get_booking_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE = "active"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
FAILED = "failed"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ── Ledger records ───────────────────────────────────────────────────────


@dataclass
class Booking:
    id: str
    date: str  # "YYYY-MM-DD"
    time: str  # "HH:MM"
    duration: int
    status: str = CONFIRMED
    booked_at: str = ""
    calendar_event_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    cancelled_at: Optional[str] = None
    # Unknown keys written by older clients, kept as-is
    extra: dict = field(default_factory=dict, repr=False)

    FIELDS = (
        "id", "date", "time", "duration", "status", "booked_at",
        "calendar_event_id", "idempotency_key", "cancelled_at",
    )

    @classmethod
    def from_dict(cls, data: dict, default_duration: int = 60) -> "Booking":
        return cls(
            id=str(data.get("id")),
            date=data.get("date", ""),
            time=data.get("time", ""),
            duration=int(data.get("duration") or default_duration),
            status=data.get("status", CONFIRMED),
            booked_at=data.get("booked_at", ""),
            calendar_event_id=data.get("calendar_event_id"),
            idempotency_key=data.get("idempotency_key"),
            cancelled_at=data.get("cancelled_at"),
            extra={k: v for k, v in data.items() if k not in cls.FIELDS},
        )

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "date": self.date,
            "time": self.time,
            "duration": self.duration,
            "status": self.status,
            "booked_at": self.booked_at,
            "calendar_event_id": self.calendar_event_id,
            "idempotency_key": self.idempotency_key,
            "cancelled_at": self.cancelled_at,
        })
        return data


@dataclass
class Purchase:
    id: str
    duration_minutes: int
    sessions_total: int
    sessions_used: int = 0
    status: str = ACTIVE
    purchase_date: str = ""
    package_id: Optional[str] = None
    payment_id: Optional[str] = None
    bookings: list[Booking] = field(default_factory=list)
    extra: dict = field(default_factory=dict, repr=False)

    FIELDS = (
        "id", "package_id", "duration_minutes", "sessions_total", "sessions_used",
        "status", "purchase_date", "payment_id", "bookings",
    )

    @property
    def remaining(self) -> int:
        return max(self.sessions_total - self.sessions_used, 0)

    @classmethod
    def from_dict(cls, data: dict) -> "Purchase":
        duration = data.get("duration_minutes")
        if not duration:
            # Legacy purchases only carry a package type
            duration = 30 if data.get("type") == "trial" else 60
        duration = int(duration)

        return cls(
            id=str(data.get("id")),
            package_id=data.get("package_id"),
            duration_minutes=duration,
            sessions_total=int(data.get("sessions_total") or 0),
            sessions_used=int(data.get("sessions_used") or 0),
            status=data.get("status", ACTIVE),
            purchase_date=data.get("purchase_date", ""),
            payment_id=data.get("payment_id"),
            bookings=[Booking.from_dict(b, duration) for b in data.get("bookings") or []],
            extra={k: v for k, v in data.items() if k not in cls.FIELDS},
        )

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "package_id": self.package_id,
            "duration_minutes": self.duration_minutes,
            "sessions_total": self.sessions_total,
            "sessions_used": self.sessions_used,
            "status": self.status,
            "purchase_date": self.purchase_date,
            "payment_id": self.payment_id,
            "bookings": [b.to_dict() for b in self.bookings],
        })
        return data


def load_purchases(raw: Optional[str]) -> list[Purchase]:
    if not raw:
        return []
    return [Purchase.from_dict(p) for p in json.loads(raw)]


def dump_purchases(purchases: Iterable[Purchase]) -> str:
    return json.dumps([p.to_dict() for p in purchases])


# ── Pure ledger queries ──────────────────────────────────────────────────


def remaining_credits(purchases: Iterable[Purchase], duration_classes: Iterable[int]) -> dict[int, int]:
    """Remaining sessions per duration class, counting active purchases only."""
    result = {duration: 0 for duration in duration_classes}
    for purchase in purchases:
        if purchase.status != ACTIVE or purchase.duration_minutes not in result:
            continue
        result[purchase.duration_minutes] += purchase.remaining
    return result


def select_purchase(purchases: Iterable[Purchase], duration: int) -> Optional[Purchase]:
    """Oldest active purchase of `duration` with a session left."""
    eligible = [
        p for p in purchases
        if p.status == ACTIVE and p.duration_minutes == duration and p.remaining > 0
    ]
    if not eligible:
        return None
    return min(eligible, key=lambda p: (p.purchase_date or "", _id_sort_key(p.id)))


def _id_sort_key(value: str) -> tuple:
    return (0, int(value), "") if value.isdigit() else (1, 0, value)


def find_booking(purchases: Iterable[Purchase], booking_id: str) -> tuple[Optional[Purchase], Optional[Booking]]:
    for purchase in purchases:
        for booking in purchase.bookings:
            if booking.id == booking_id:
                return purchase, booking
    return None, None


def find_confirmed_booking(
    purchases: Iterable[Purchase],
    idempotency_key: Optional[str] = None,
    booking_date: Optional[str] = None,
    booking_time: Optional[str] = None,
) -> Optional[Booking]:
    """Confirmed booking with the same idempotency key, or at the same date and time."""
    for purchase in purchases:
        for booking in purchase.bookings:
            if booking.status != CONFIRMED:
                continue
            if idempotency_key and booking.idempotency_key == idempotency_key:
                return booking
            if booking_date and booking.date == booking_date and booking.time == booking_time:
                return booking
    return None


# ── Store access ─────────────────────────────────────────────────────────


def get_user(db: Session, principal) -> Users:
    """
    Resolve the authenticated principal to a user row.

    Matches on the identity provider's subject id first, then on email.

    Raises:
        UserNotFoundError: No user row for this principal
    """
    user = None
    if principal.subject:
        user = db.query(Users).filter(Users.google_id == principal.subject).first()
    if user is None and principal.email:
        user = db.query(Users).filter(Users.email == principal.email).first()
    if user is None:
        raise UserNotFoundError()
    return user


def read_ledger(db: Session, user_id: int) -> tuple[list[Purchase], int]:
    """Current purchases and version, read from the database (not the identity map)."""
    row = db.query(Users.purchases, Users.version).filter(Users.id == user_id).first()
    if row is None:
        raise UserNotFoundError()
    return load_purchases(row.purchases), row.version


def conditional_update_purchases(
    db: Session,
    user_id: int,
    expected_version: int,
    purchases: Iterable[Purchase],
) -> bool:
    """
    Write the ledger if nobody else wrote it since `expected_version` was read.

    UPDATE users SET purchases = ?, version = version + 1
    WHERE id = ? AND version = ?

    Returns:
        True if the row was updated
    """
    updated = (
        db.query(Users)
        .filter(Users.id == user_id, Users.version == expected_version)
        .update(
            {
                Users.purchases: dump_purchases(purchases),
                Users.version: expected_version + 1,
                Users.updated_at: _utc_now(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


# ── Ledger operations ────────────────────────────────────────────────────


class CreditLedger:
    """Read-modify-conditional-write operations on a user's purchases."""

    def __init__(self, config: BookingConfig | None = None):
        self.config = config or get_booking_config()

    def _apply(
        self,
        db: Session,
        user_id: int,
        mutate: Callable[[list[Purchase]], tuple[T, bool]],
    ) -> T:
        """
        Run `mutate` against a fresh read and write the result conditionally.

        `mutate` returns (result, changed). Domain errors raised by `mutate`
        propagate without any write.

        Raises:
            LedgerConflictError: Lost the race ledger_max_retries times
        """
        for attempt in range(1, self.config.ledger_max_retries + 1):
            purchases, version = read_ledger(db, user_id)
            result, changed = mutate(purchases)
            if not changed:
                return result
            if conditional_update_purchases(db, user_id, version, purchases):
                return result
            logger.warning(
                f"Ledger write conflict for user {user_id} "
                f"(attempt {attempt}/{self.config.ledger_max_retries})"
            )

        logger.error(f"Ledger write for user {user_id} lost {self.config.ledger_max_retries} races")
        raise LedgerConflictError()

    # ── Read ─────────────────────────────────────────────────────────────

    def credits(self, db: Session, user_id: int) -> dict[int, int]:
        purchases, _ = read_ledger(db, user_id)
        return remaining_credits(purchases, self.config.duration_classes)

    def bookings(self, db: Session, user_id: int) -> list[Booking]:
        """All bookings of the user, newest session first."""
        purchases, _ = read_ledger(db, user_id)
        items = [b for p in purchases for b in p.bookings]
        return sorted(items, key=lambda b: (b.date, b.time), reverse=True)

    def find_confirmed(
        self,
        db: Session,
        user_id: int,
        idempotency_key: Optional[str] = None,
        booking_date: Optional[str] = None,
        booking_time: Optional[str] = None,
    ) -> Optional[Booking]:
        purchases, _ = read_ledger(db, user_id)
        return find_confirmed_booking(purchases, idempotency_key, booking_date, booking_time)

    # ── Write ────────────────────────────────────────────────────────────

    def spend(self, db: Session, user_id: int, booking: Booking) -> Booking:
        """
        Consume one credit of booking.duration and record the booking.

        Raises:
            DuplicateBookingError: Same idempotency key or slot already confirmed
            InsufficientCreditError: No active purchase of that duration has a session left
            LedgerConflictError: Retries exhausted
        """
        def mutate(purchases: list[Purchase]):
            existing = find_confirmed_booking(
                purchases, booking.idempotency_key, booking.date, booking.time
            )
            if existing is not None:
                raise DuplicateBookingError(existing)

            purchase = select_purchase(purchases, booking.duration)
            if purchase is None:
                raise InsufficientCreditError(booking.duration)

            purchase.sessions_used += 1
            purchase.bookings.append(booking)
            return booking, True

        spent = self._apply(db, user_id, mutate)
        logger.info(f"Spent {booking.duration}-minute credit for user {user_id}, booking {booking.id}")
        return spent

    def revert(self, db: Session, user_id: int, booking_id: str) -> bool:
        """
        Undo a spend whose calendar event could not be created.

        Marks the booking failed and gives the session back. Safe to repeat.

        Returns:
            False if the booking is not in the ledger (the spend never landed)
        """
        def mutate(purchases: list[Purchase]):
            purchase, booking = find_booking(purchases, booking_id)
            if booking is None:
                return False, False
            if booking.status != CONFIRMED:
                return True, False

            booking.status = FAILED
            purchase.sessions_used = max(purchase.sessions_used - 1, 0)
            return True, True

        reverted = self._apply(db, user_id, mutate)
        if reverted:
            logger.info(f"Reverted credit spend for user {user_id}, booking {booking_id}")
        return reverted

    def cancel(self, db: Session, user_id: int, booking_id: str, today: date) -> tuple[Booking, bool]:
        """
        Cancel a confirmed booking and restore its credit.

        Returns:
            (booking, changed); changed is False if it was already cancelled

        Raises:
            BookingNotFoundError: No such confirmed booking
            TooLateToCancelError: Session is today or in the past
        """
        def mutate(purchases: list[Purchase]):
            purchase, booking = find_booking(purchases, booking_id)
            if booking is None or booking.status == FAILED:
                raise BookingNotFoundError()
            if booking.status == CANCELLED:
                return (booking, False), False
            if date.fromisoformat(booking.date) <= today:
                raise TooLateToCancelError()

            booking.status = CANCELLED
            booking.cancelled_at = _utc_now()
            purchase.sessions_used = max(purchase.sessions_used - 1, 0)
            return (booking, True), True

        booking, changed = self._apply(db, user_id, mutate)
        if changed:
            logger.info(f"Cancelled booking {booking_id} for user {user_id}, credit restored")
        return booking, changed

    def grant(
        self,
        db: Session,
        user_id: int,
        payment_id: str,
        duration: int,
        sessions: int,
        package_id: Optional[str] = None,
    ) -> tuple[Purchase, bool]:
        """
        Add a purchase of `sessions` credits. Idempotent on payment_id.

        Returns:
            (purchase, created); created is False for a replayed payment
        """
        if duration not in self.config.duration_classes:
            raise InvalidDurationError()
        if sessions < 1:
            raise ValidationError("At least one session must be granted.")

        def mutate(purchases: list[Purchase]):
            for purchase in purchases:
                if purchase.payment_id == payment_id:
                    return (purchase, False), False

            purchase = Purchase(
                id=uuid4().hex,
                package_id=package_id,
                duration_minutes=duration,
                sessions_total=sessions,
                sessions_used=0,
                status=ACTIVE,
                purchase_date=_utc_now(),
                payment_id=payment_id,
            )
            purchases.append(purchase)
            return (purchase, True), True

        purchase, created = self._apply(db, user_id, mutate)
        if created:
            logger.info(
                f"Granted {sessions} x {duration}-minute sessions to user {user_id} (payment {payment_id})"
            )
        return purchase, created
