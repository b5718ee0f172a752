"""
backend/coachbook/services/slot_locks.py

Short-lived locks on 30-minute slot cells, held for the duration of one
commit attempt.

Key format: slot:lock:{date}:{HH:MM}
Each cell is a redis-py Lock (SET NX with expiry), so a crashed worker
frees its cells after slot_lock_ttl_seconds.
"""

import logging
import threading
from datetime import date

from redis import Redis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)


def slot_lock_key(day: date, time_str: str) -> str:
    return f"slot:lock:{day.isoformat()}:{time_str}"


class RedisSlotLockStore:
    def __init__(self, redis: Redis):
        self.redis = redis
        self._guard = threading.Lock()
        self._held: dict[str, list] = {}

    def acquire(self, keys: list[str], token: str, ttl: int) -> bool:
        """
        Acquire every key or none of them.

        Returns:
            False if any cell is already held by another commit
        """
        acquired = []
        for key in keys:
            lock = self.redis.lock(key, timeout=ttl, blocking=False)
            if not lock.acquire(token=token):
                logger.info(f"Slot cell {key} is locked by another commit")
                self._release_all(acquired)
                return False
            acquired.append(lock)

        with self._guard:
            self._held[token] = acquired
        return True

    def release(self, keys: list[str], token: str) -> None:
        with self._guard:
            locks = self._held.pop(token, [])
        self._release_all(locks)

    def is_locked(self, key: str) -> bool:
        return bool(self.redis.exists(key))

    @staticmethod
    def _release_all(locks: list) -> None:
        for lock in locks:
            try:
                lock.release()
            except LockError:
                # Expired and possibly taken over; nothing left to release
                logger.warning(f"Slot lock {lock.name} expired before release")
