"""
backend/coachbook/services/compensation.py

Undoing a credit spend after the calendar write failed.

The revert is retried with exponential backoff. If the ledger still cannot
be written, the revert is parked on a Redis list and replayed later by
replay_compensations() (POST /internal/compensations/replay).

Queue item:
    {"user_id": 1, "booking_id": "...", "event_id": "cb...", "queued_at": 1700000000}
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from redis import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import LedgerConflictError, UserNotFoundError
from .credits import CreditLedger
from .google_calendar import CALENDAR_ERRORS

logger = logging.getLogger(__name__)

COMPENSATION_QUEUE = "booking:compensations"

# Failures worth retrying; domain errors are not
RETRYABLE_ERRORS = (LedgerConflictError, SQLAlchemyError)


class CompensationQueue(Protocol):
    def push(self, item: dict) -> None: ...

    def pop(self) -> Optional[dict]: ...

    def __len__(self) -> int: ...


class RedisCompensationQueue:
    """FIFO of pending reverts on a Redis list."""

    def __init__(self, redis: Redis, key: str = COMPENSATION_QUEUE):
        self.redis = redis
        self.key = key

    def push(self, item: dict) -> None:
        self.redis.rpush(self.key, json.dumps(item))

    def pop(self) -> Optional[dict]:
        raw = self.redis.lpop(self.key)
        if raw is None:
            return None
        return json.loads(raw)

    def __len__(self) -> int:
        return int(self.redis.llen(self.key))


@dataclass(frozen=True)
class ReplayResult:
    replayed: int
    remaining: int


def delete_event_quietly(calendar, event_id: Optional[str]) -> bool:
    """Best-effort event delete; the event may never have been created."""
    if not event_id:
        return True
    try:
        return calendar.delete_event(event_id)
    except CALENDAR_ERRORS as e:
        logger.warning(f"Could not delete calendar event {event_id}: {e}")
        return False


def revert_spend(
    db: Session,
    ledger: CreditLedger,
    user_id: int,
    booking_id: str,
    attempts: int,
    backoff_seconds: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Revert a spend, retrying conflicts and store errors.

    Returns:
        True once the ledger no longer counts the booking
    """
    for attempt in range(1, attempts + 1):
        try:
            ledger.revert(db, user_id, booking_id)
            return True
        except RETRYABLE_ERRORS as e:
            db.rollback()
            logger.warning(f"Revert of booking {booking_id} failed (attempt {attempt}/{attempts}): {e}")
            if attempt < attempts:
                sleep(backoff_seconds * 2 ** (attempt - 1))
    return False


def compensate_failed_booking(
    db: Session,
    ledger: CreditLedger,
    calendar,
    queue: CompensationQueue,
    user_id: int,
    booking_id: str,
    event_id: Optional[str],
    attempts: int,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Roll back a booking whose calendar event could not be created.

    Returns:
        True if reverted now, False if parked on the compensation queue
    """
    delete_event_quietly(calendar, event_id)

    if revert_spend(db, ledger, user_id, booking_id, attempts, sleep=sleep):
        return True

    queue.push({
        "user_id": user_id,
        "booking_id": booking_id,
        "event_id": event_id,
        "queued_at": int(time.time()),
    })
    logger.critical(
        f"Could not revert credit spend for booking {booking_id} (user {user_id}); "
        f"queued on {COMPENSATION_QUEUE}"
    )
    return False


def replay_compensations(
    db: Session,
    ledger: CreditLedger,
    calendar,
    queue: CompensationQueue,
    limit: int = 100,
) -> ReplayResult:
    """
    Drain parked reverts. An item that fails again goes back on the queue
    and stops the run.
    """
    replayed = 0
    for _ in range(limit):
        item = queue.pop()
        if item is None:
            break

        delete_event_quietly(calendar, item.get("event_id"))
        try:
            ledger.revert(db, item["user_id"], item["booking_id"])
        except RETRYABLE_ERRORS as e:
            db.rollback()
            queue.push(item)
            logger.warning(f"Replay of compensation for booking {item['booking_id']} failed: {e}")
            break
        except UserNotFoundError:
            logger.error(f"Dropping compensation for booking {item['booking_id']}: user {item['user_id']} no longer exists")
            continue

        replayed += 1
        logger.info(f"Replayed compensation for booking {item['booking_id']}")

    return ReplayResult(replayed=replayed, remaining=len(queue))
