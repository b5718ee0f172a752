"""
In-memory stores with the same interface as the Redis-backed ones.

Used by tests and by single-process runs without Redis. All state lives in
the instance and is guarded by a lock; the clock is injectable so TTLs can
be driven deterministically.
"""

from __future__ import annotations

import json
import threading
import time
from collections import deque
from datetime import date
from typing import Callable

from .slots.availability import DayAvailability


class MemoryAvailabilityStore:
    """Availability cache store backed by a dict."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[date, tuple[DayAvailability, float]] = {}

    def put_many(self, entries: list[tuple[DayAvailability, int]]) -> None:
        now = self._clock()
        with self._lock:
            for entry, ttl in entries:
                self._entries[entry.date] = (entry, now + ttl)

    def get(self, dt: date) -> DayAvailability | None:
        with self._lock:
            item = self._entries.get(dt)
            if item is None:
                return None
            entry, expires_at = item
            if expires_at <= self._clock():
                del self._entries[dt]
                return None
            return entry

    def ttl(self, dt: date) -> int | None:
        with self._lock:
            item = self._entries.get(dt)
        if item is None:
            return None
        remaining = int(item[1] - self._clock())
        return remaining if remaining > 0 else None

    def delete(self, dates: list[date] | None = None) -> int:
        with self._lock:
            if dates is None:
                count = len(self._entries)
                self._entries.clear()
                return count
            return sum(1 for dt in dates if self._entries.pop(dt, None) is not None)


class MemorySlotLockStore:
    """Slot-cell locks backed by a dict of key -> (token, expires_at)."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._held: dict[str, tuple[str, float]] = {}

    def acquire(self, keys: list[str], token: str, ttl: int) -> bool:
        """All-or-nothing acquisition of every key."""
        now = self._clock()
        with self._lock:
            for key in keys:
                held = self._held.get(key)
                if held is not None and held[1] > now:
                    return False
            for key in keys:
                self._held[key] = (token, now + ttl)
            return True

    def release(self, keys: list[str], token: str) -> None:
        with self._lock:
            for key in keys:
                held = self._held.get(key)
                if held is not None and held[0] == token:
                    del self._held[key]

    def is_locked(self, key: str) -> bool:
        with self._lock:
            held = self._held.get(key)
            return held is not None and held[1] > self._clock()


class MemoryCompensationQueue:
    """FIFO of pending ledger reverts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: deque[str] = deque()

    def push(self, item: dict) -> None:
        with self._lock:
            self._items.append(json.dumps(item))

    def pop(self) -> dict | None:
        with self._lock:
            if not self._items:
                return None
            return json.loads(self._items.popleft())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
