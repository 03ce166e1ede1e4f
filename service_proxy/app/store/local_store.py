"""
In-process coordination store used when the shared store is absent or failing.

Single-process only: concurrent processes in fallback mode each keep their own
counters and may together admit slightly over a limit.
"""

import time
from threading import Lock
from typing import Callable, Dict, Optional

from .base import CoordinationStore

_SWEEP_EVERY = 256


def _now_ms() -> float:
    return time.time() * 1000


class LocalCoordinationStore(CoordinationStore):
    """Dict-backed store with per-key expiry, guarded by a lock.

    Expired keys read as absent and are purged on access; a full sweep runs
    every few hundred writes so abandoned keys do not accumulate.
    """

    name = "local"

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or _now_ms
        self._values: Dict[str, str] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        self._expiry: Dict[str, float] = {}
        self._writes = 0
        self._lock = Lock()

    def _drop(self, key: str) -> None:
        self._values.pop(key, None)
        self._zsets.pop(key, None)
        self._expiry.pop(key, None)

    def _purge_if_expired(self, key: str, now: float) -> None:
        expires_at = self._expiry.get(key)
        if expires_at is not None and expires_at <= now:
            self._drop(key)

    def _touch_write(self, now: float) -> None:
        self._writes += 1
        if self._writes % _SWEEP_EVERY == 0:
            for key in [k for k, exp in self._expiry.items() if exp <= now]:
                self._drop(key)

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            self._purge_if_expired(key, self._clock())
            return self._values.get(key)

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        with self._lock:
            now = self._clock()
            self._drop(key)
            self._values[key] = str(value)
            if ttl_ms is not None:
                self._expiry[key] = now + ttl_ms
            self._touch_write(now)

    async def set_if_absent(self, key: str, value: str, ttl_ms: Optional[int] = None) -> bool:
        with self._lock:
            now = self._clock()
            self._purge_if_expired(key, now)
            if key in self._values or key in self._zsets:
                return False
            self._values[key] = str(value)
            if ttl_ms is not None:
                self._expiry[key] = now + ttl_ms
            self._touch_write(now)
            return True

    async def increment_by(self, key: str, delta: int) -> int:
        with self._lock:
            now = self._clock()
            self._purge_if_expired(key, now)
            current = int(self._values.get(key, "0"))
            new_value = current + int(delta)
            self._values[key] = str(new_value)
            self._touch_write(now)
            return new_value

    async def expire(self, key: str, ttl_ms: int) -> None:
        with self._lock:
            now = self._clock()
            self._purge_if_expired(key, now)
            if key in self._values or key in self._zsets:
                self._expiry[key] = now + ttl_ms

    async def add_to_ordered_set(self, key: str, score: float, member: str) -> None:
        with self._lock:
            now = self._clock()
            self._purge_if_expired(key, now)
            self._zsets.setdefault(key, {})[member] = float(score)
            self._touch_write(now)

    async def remove_range_by_score(self, key: str, min_score: float, max_score: float) -> int:
        with self._lock:
            self._purge_if_expired(key, self._clock())
            members = self._zsets.get(key)
            if not members:
                return 0
            stale = [m for m, s in members.items() if min_score <= s <= max_score]
            for member in stale:
                del members[member]
            if not members:
                self._drop(key)
            return len(stale)

    async def count_ordered_set(self, key: str) -> int:
        with self._lock:
            self._purge_if_expired(key, self._clock())
            return len(self._zsets.get(key, {}))

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for k in set(self._values) | set(self._zsets)
                       if self._expiry.get(k, now + 1) > now)
