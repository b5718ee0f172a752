"""
backend/coachbook/services/events.py

Event emitter: pushes booking events to a Redis queue for notification
consumers (confirmation emails, coach alerts).

Queue:
- events:p2p: one message per booking change, delivered to the booker
"""

import json
import time
import logging

from ..redis_client import redis_client

logger = logging.getLogger(__name__)

EVENTS_QUEUE = "events:p2p"


def emit_event(event_type: str, payload: dict) -> None:
    """
    Emit a booking event.

    Pushed to Redis list `events:p2p`. Failure to notify never fails the
    booking itself: the error is logged and dropped.
    """
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    try:
        redis_client.rpush(EVENTS_QUEUE, json.dumps(event))
        logger.info(f"Event emitted: {event_type} → {EVENTS_QUEUE}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")


def booking_event_payload(user, booking) -> dict:
    return {
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "booking": booking.to_dict(),
    }
