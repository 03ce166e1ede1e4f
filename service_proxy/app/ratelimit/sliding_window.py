"""
Sliding-window rate limiter with escalating bans.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from shared.logging import get_logger
from ..store import CoordinationBackends, CoordinationStore


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    reason: str = "ok"
    current_count: int = 0
    limit: int = 0
    retry_after_ms: Optional[int] = None
    violations: Optional[int] = None


class SlidingWindowRateLimiter:
    """Per-identity sliding window over a coordination store ordered set.

    Every check first consults the ban record; a banned identity is denied
    without taking a window slot. Otherwise a unique marker is added, markers
    older than the window are dropped, and the rest are counted. Exceeding the
    maximum is a violation: the violation counter (alive for 10x the window)
    is bumped and a ban of ``min(base * 2^(v-1), max_ban)`` is written.
    """

    def __init__(self, backends: CoordinationBackends, ban_base_ms: int = 5 * 60 * 1000,
                 ban_max_ms: int = 24 * 60 * 60 * 1000, clock: Optional[Callable[[], float]] = None):
        self.backends = backends
        self.ban_base_ms = ban_base_ms
        self.ban_max_ms = ban_max_ms
        self._clock = clock or _now_ms
        self.logger = get_logger("proxy.rate_limiter")

    @staticmethod
    def _make_key(prefix: str, identity: str) -> str:
        return f"{prefix}:{identity}"

    def ban_duration_ms(self, violations: int) -> int:
        """Escalating ban length for the given violation count."""
        return int(min(self.ban_base_ms * (2 ** max(0, violations - 1)), self.ban_max_ms))

    async def check(self, identity: str, window_ms: int, max_per_window: int) -> RateLimitDecision:
        """Record one request for identity and decide whether it is allowed."""

        async def _check(store: CoordinationStore) -> RateLimitDecision:
            return await self._check_with(store, identity, window_ms, max_per_window)

        return await self.backends.run("rate_limit", _check)

    async def _check_with(self, store: CoordinationStore, identity: str, window_ms: int,
                          max_per_window: int) -> RateLimitDecision:
        now = self._clock()
        ban_key = self._make_key("ban", identity)

        banned_until = await store.get(ban_key)
        if banned_until is not None:
            return RateLimitDecision(
                allowed=False,
                reason="banned",
                limit=max_per_window,
                retry_after_ms=self._retry_after(banned_until, now),
            )

        window_key = self._make_key("rl", identity)
        member = f"{int(now)}-{uuid.uuid4().hex}"
        await store.add_to_ordered_set(window_key, now, member)
        await store.expire(window_key, window_ms)
        await store.remove_range_by_score(window_key, 0, now - window_ms)
        count = await store.count_ordered_set(window_key)

        if count <= max_per_window:
            return RateLimitDecision(allowed=True, current_count=count, limit=max_per_window)

        vio_key = self._make_key("vio", identity)
        violations = await store.increment_by(vio_key, 1)
        await store.expire(vio_key, window_ms * 10)

        ban_ms = self.ban_duration_ms(violations)
        await store.set(ban_key, str(int(now + ban_ms)), ban_ms)

        self.logger.warning(
            "rate_limit_ban",
            identity=identity,
            current_count=count,
            limit=max_per_window,
            ban_ms=ban_ms,
            violations=violations,
        )
        return RateLimitDecision(
            allowed=False,
            reason="rate_limited",
            current_count=count,
            limit=max_per_window,
            retry_after_ms=ban_ms,
            violations=violations,
        )

    @staticmethod
    def _retry_after(banned_until: str, now: float) -> Optional[int]:
        try:
            return max(0, int(float(banned_until) - now))
        except ValueError:
            return None
