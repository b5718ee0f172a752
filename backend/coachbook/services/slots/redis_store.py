# backend/coachbook/services/slots/redis_store.py
"""
Redis storage for computed day availability.

Key format: availability:day:{date}
Value: JSON of DayAvailability (slots, timezone, computed_at, degraded).
TTL: per key (SETEX), an expired key is a cache miss.

Every write replaces the whole key, so readers never see a partially
written day.
"""

import json
from datetime import date

from redis import Redis

from .availability import DayAvailability


class AvailabilityRedisStore:
    """Redis storage wrapper for per-date availability entries."""

    KEY_PREFIX = "availability:day"

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, dt: date) -> str:
        return f"{self.KEY_PREFIX}:{dt.isoformat()}"

    # ── Write ────────────────────────────────────────────────────────────

    def put_many(self, entries: list[tuple[DayAvailability, int]]) -> None:
        """Batch store (entry, ttl_seconds) pairs via pipeline."""
        if not entries:
            return

        pipe = self.redis.pipeline()
        for entry, ttl in entries:
            pipe.setex(self._key(entry.date), max(int(ttl), 1), json.dumps(entry.to_dict()))
        pipe.execute()

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, dt: date) -> DayAvailability | None:
        """Cached entry, or None on cache miss."""
        raw = self.redis.get(self._key(dt))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return DayAvailability.from_dict(json.loads(raw))

    def ttl(self, dt: date) -> int | None:
        """Seconds until the entry expires, or None on cache miss."""
        remaining = self.redis.ttl(self._key(dt))
        return remaining if remaining and remaining > 0 else None

    # ── Delete ───────────────────────────────────────────────────────────

    def delete(self, dates: list[date] | None = None) -> int:
        """
        Delete cached days.

        Args:
            dates: Specific dates, or None to delete every cached day.

        Returns:
            Number of deleted keys.
        """
        if dates:
            keys = [self._key(dt) for dt in dates]
        else:
            keys = list(self.redis.scan_iter(f"{self.KEY_PREFIX}:*"))

        if not keys:
            return 0

        return self.redis.delete(*keys)
