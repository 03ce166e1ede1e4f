"""
Unit tests for the quota ledger.
"""

import asyncio
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_proxy.app.quota import QuotaLedger
from service_proxy.app.store import CoordinationBackends, LocalCoordinationStore
from shared.test_helpers import FakeClock

PERIOD_MS = 30 * 24 * 60 * 60 * 1000


class YieldingStore(LocalCoordinationStore):
    """Local store that hands control back to the loop before every operation."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.increments = []

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set_if_absent(self, key, value, ttl_ms=None):
        await asyncio.sleep(0)
        return await super().set_if_absent(key, value, ttl_ms)

    async def increment_by(self, key, delta):
        await asyncio.sleep(0)
        self.increments.append((key, delta))
        return await super().increment_by(key, delta)

    async def expire(self, key, ttl_ms):
        await asyncio.sleep(0)
        return await super().expire(key, ttl_ms)


class TestQuotaLedger:
    """Test cases for QuotaLedger."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return LocalCoordinationStore(clock=clock)

    @pytest.fixture
    def ledger(self, store):
        return QuotaLedger(CoordinationBackends(store), max_units=150, max_requests=10, period_ms=PERIOD_MS)

    @pytest.mark.asyncio
    async def test_reserve_then_adjust(self, ledger):
        decision = await ledger.reserve("a", 100, 1)
        assert decision.allowed

        await ledger.adjust("a", -20)
        status = await ledger.status("a")

        assert status.units == 80
        assert status.requests == 1
        assert status.max_units == 150
        assert status.period_ms == PERIOD_MS

    @pytest.mark.asyncio
    async def test_denied_reservation_rolls_back(self, ledger):
        assert (await ledger.reserve("a", 100, 1)).allowed

        decision = await ledger.reserve("a", 100, 1)

        assert not decision.allowed
        assert decision.reason == "units_exceeded"
        status = await ledger.status("a")
        assert (status.units, status.requests) == (100, 1)

    @pytest.mark.asyncio
    async def test_request_limit(self, store):
        ledger = QuotaLedger(CoordinationBackends(store), max_units=1000, max_requests=2, period_ms=PERIOD_MS)
        assert (await ledger.reserve("a", 1)).allowed
        assert (await ledger.reserve("a", 1)).allowed

        decision = await ledger.reserve("a", 1)

        assert not decision.allowed
        assert decision.reason == "requests_exceeded"
        assert (await ledger.status("a")).requests == 2

    @pytest.mark.asyncio
    async def test_concurrent_reservations_only_one_fits(self, ledger):
        results = await asyncio.gather(ledger.reserve("a", 100, 1), ledger.reserve("a", 100, 1))

        assert sorted(r.allowed for r in results) == [False, True]
        status = await ledger.status("a")
        assert (status.units, status.requests) == (100, 1)

    @pytest.mark.asyncio
    async def test_zero_unit_reservation_still_counts_adjustment(self, ledger):
        assert (await ledger.reserve("a", 0, 1)).allowed

        assert await ledger.adjust("a", 30) == 30
        assert (await ledger.status("a")).units == 30

    @pytest.mark.asyncio
    async def test_counters_share_one_period(self, ledger, clock):
        await ledger.reserve("a", 10, 1)
        await ledger.adjust("a", -10)
        clock.advance(PERIOD_MS // 2)
        await ledger.reserve("a", 5, 1)
        assert (await ledger.status("a")).units == 5

        clock.advance(PERIOD_MS // 2)

        status = await ledger.status("a")
        assert (status.units, status.requests) == (0, 0)

    @pytest.mark.asyncio
    async def test_interleaved_reservations_only_one_fits(self, clock):
        store = YieldingStore(clock=clock)
        ledger = QuotaLedger(CoordinationBackends(store), max_units=150, max_requests=10, period_ms=PERIOD_MS)

        results = await asyncio.gather(ledger.reserve("a", 100, 1), ledger.reserve("a", 100, 1))

        unit_deltas = [delta for key, delta in store.increments if key.startswith("quota:units")]
        assert unit_deltas[:2] == [100, 100]
        assert sorted(r.allowed for r in results) == [False, True]
        status = await ledger.status("a")
        assert (status.units, status.requests) == (100, 1)

    @pytest.mark.asyncio
    async def test_period_expiry_resets_account(self, ledger, clock):
        await ledger.reserve("a", 100, 1)
        clock.advance(PERIOD_MS)

        assert (await ledger.reserve("a", 100, 1)).allowed
        status = await ledger.status("a")
        assert (status.units, status.requests) == (100, 1)

    @pytest.mark.asyncio
    async def test_adjust_on_expired_account_is_discarded(self, ledger, clock):
        await ledger.reserve("a", 100, 1)
        clock.advance(PERIOD_MS)

        await ledger.adjust("a", 30)

        assert (await ledger.status("a")).units == 0

    @pytest.mark.asyncio
    async def test_adjust_zero_is_noop(self, ledger):
        assert await ledger.adjust("a", 0) == 0
        assert (await ledger.status("a")).units == 0

    @pytest.mark.asyncio
    async def test_status_of_unknown_identity(self, ledger):
        status = await ledger.status("nobody")
        assert status.to_dict() == {
            "units": 0,
            "requests": 0,
            "max_units": 150,
            "max_requests": 10,
            "period_ms": PERIOD_MS,
        }
