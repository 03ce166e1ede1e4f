"""
Two-phase quota ledger: reserve usage units up front, adjust once real usage is known.
"""

import uuid
from dataclasses import dataclass, asdict
from typing import Any, Dict

from shared.logging import get_logger
from ..store import CoordinationBackends, CoordinationStore


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a reservation."""

    allowed: bool
    units: int = 0
    requests: int = 0
    reason: str = "ok"


@dataclass(frozen=True)
class QuotaStatus:
    units: int
    requests: int
    max_units: int
    max_requests: int
    period_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class QuotaLedger:
    """Per-identity usage-unit and request counters over a period.

    Reservations increment both counters, then check them; any excess rolls
    both back by exactly what was added. Store-level atomic increments mean
    concurrent reservations can never both slip past a limit, and a denied
    reservation leaves the counters as it found them.

    The period is an explicit marker, ``quota:period:<id>``, created with the
    period as its expiry by the first reservation after the previous one
    lapsed. Its value names the counters of that period, so a new period
    always starts from fresh counters.
    """

    PERIOD_PREFIX = "quota:period"
    UNITS_PREFIX = "quota:units"
    REQUESTS_PREFIX = "quota:requests"

    def __init__(self, backends: CoordinationBackends, max_units: int, max_requests: int, period_ms: int):
        self.backends = backends
        self.max_units = max_units
        self.max_requests = max_requests
        self.period_ms = period_ms
        self.logger = get_logger("proxy.quota")

    def _period_key(self, identity: str) -> str:
        return f"{self.PERIOD_PREFIX}:{identity}"

    def _units_key(self, identity: str, period: str) -> str:
        return f"{self.UNITS_PREFIX}:{identity}:{period}"

    def _requests_key(self, identity: str, period: str) -> str:
        return f"{self.REQUESTS_PREFIX}:{identity}:{period}"

    async def _open_period(self, store: CoordinationStore, identity: str) -> str:
        """Return the current period of identity, starting one if none is live."""
        key = self._period_key(identity)
        while True:
            period = uuid.uuid4().hex
            if await store.set_if_absent(key, period, self.period_ms):
                return period
            current = await store.get(key)
            if current is not None:
                return current

    async def _increment(self, store: CoordinationStore, key: str, delta: int) -> int:
        value = await store.increment_by(key, delta)
        await store.expire(key, self.period_ms)
        return value

    async def reserve(self, identity: str, units: int, requests: int = 1) -> QuotaDecision:
        """Reserve units and requests for identity, or deny without side effects."""

        async def _reserve(store: CoordinationStore) -> QuotaDecision:
            period = await self._open_period(store, identity)
            units_key = self._units_key(identity, period)
            requests_key = self._requests_key(identity, period)

            new_units = await self._increment(store, units_key, units)
            new_requests = await self._increment(store, requests_key, requests)

            if new_units > self.max_units or new_requests > self.max_requests:
                await self._increment(store, units_key, -units)
                await self._increment(store, requests_key, -requests)
                reason = "units_exceeded" if new_units > self.max_units else "requests_exceeded"
                self.logger.warning(
                    "quota_exceeded",
                    identity=identity,
                    reason=reason,
                    units=new_units - units,
                    requests=new_requests - requests,
                )
                return QuotaDecision(allowed=False, units=new_units - units,
                                     requests=new_requests - requests, reason=reason)

            return QuotaDecision(allowed=True, units=new_units, requests=new_requests)

        return await self.backends.run("quota_reserve", _reserve)

    async def adjust(self, identity: str, delta_units: int) -> int:
        """Correct the unit counter by delta_units. Never denies.

        An adjustment arriving after the period lapsed is discarded.
        """
        if not delta_units:
            return 0

        async def _adjust(store: CoordinationStore) -> int:
            period = await store.get(self._period_key(identity))
            if period is None:
                self.logger.info("quota_adjust_discarded", identity=identity, delta_units=delta_units)
                return 0
            return await self._increment(store, self._units_key(identity, period), delta_units)

        return await self.backends.run("quota_adjust", _adjust)

    async def status(self, identity: str) -> QuotaStatus:
        async def _status(store: CoordinationStore) -> QuotaStatus:
            units = requests = None
            period = await store.get(self._period_key(identity))
            if period is not None:
                units = await store.get(self._units_key(identity, period))
                requests = await store.get(self._requests_key(identity, period))
            return QuotaStatus(
                units=int(units or 0),
                requests=int(requests or 0),
                max_units=self.max_units,
                max_requests=self.max_requests,
                period_ms=self.period_ms,
            )

        return await self.backends.run("quota_status", _status)
