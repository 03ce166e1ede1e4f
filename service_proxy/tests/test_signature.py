"""
Unit tests for signature verification and replay protection.
"""

import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_proxy.app.security import ReplayGuard, SignatureVerifier, compute_signature
from service_proxy.app.store import CoordinationBackends, LocalCoordinationStore
from shared.errors import ConfigurationError
from shared.test_helpers import FakeClock, SignatureFactory

TTL_MS = 120_000
BODY = b'{"raw_text":"John Doe","session_id":"s1"}'


class TestSignatureVerifier:
    """Test cases for SignatureVerifier."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def verifier(self, clock):
        backends = CoordinationBackends(LocalCoordinationStore(clock=clock))
        return SignatureVerifier(ReplayGuard(backends), clock=clock)

    def test_compute_signature_covers_timestamp_and_body(self):
        a = compute_signature("s", 1000, BODY)
        assert a == compute_signature("s", 1000, BODY)
        assert a != compute_signature("s", 1001, BODY)
        assert a != compute_signature("s", 1000, BODY + b" ")
        assert len(a) == 64

    @pytest.mark.asyncio
    async def test_valid_signature_accepted(self, verifier, clock):
        header = SignatureFactory("secret").header(BODY, int(clock()))

        result = await verifier.verify(header, BODY, ["secret"], TTL_MS)

        assert result.accepted
        assert result.secret_index == 0

    @pytest.mark.asyncio
    async def test_second_submission_is_replay(self, verifier, clock):
        header = SignatureFactory("secret").header(BODY, int(clock()))

        first = await verifier.verify(header, BODY, ["secret"], TTL_MS)
        second = await verifier.verify(header, BODY, ["secret"], TTL_MS)

        assert first.accepted
        assert not second.accepted
        assert second.reason == "replay"

    @pytest.mark.asyncio
    async def test_stale_timestamp_rejected_before_replay_check(self, clock):
        replay_guard = AsyncMock()
        verifier = SignatureVerifier(replay_guard, clock=clock)
        header = SignatureFactory("secret").header(BODY, int(clock()) - TTL_MS - 1)

        result = await verifier.verify(header, BODY, ["secret"], TTL_MS)

        assert result.reason == "signature_expired"
        replay_guard.check_and_record.assert_not_called()

    @pytest.mark.asyncio
    async def test_future_timestamp_outside_ttl_rejected(self, verifier, clock):
        header = SignatureFactory("secret").header(BODY, int(clock()) + TTL_MS + 1)
        result = await verifier.verify(header, BODY, ["secret"], TTL_MS)
        assert result.reason == "signature_expired"

    @pytest.mark.asyncio
    async def test_rotated_previous_secret_accepted(self, verifier, clock):
        header = SignatureFactory("s-old").header(BODY, int(clock()))

        result = await verifier.verify(header, BODY, ["s-new", "s-old"], TTL_MS)

        assert result.accepted
        assert result.secret_index == 1

    @pytest.mark.asyncio
    async def test_unknown_secret_rejected(self, verifier, clock):
        header = SignatureFactory("other").header(BODY, int(clock()))
        result = await verifier.verify(header, BODY, ["secret"], TTL_MS)
        assert result.reason == "invalid_signature"

    @pytest.mark.asyncio
    async def test_tampered_body_rejected(self, verifier, clock):
        header = SignatureFactory("secret").header(BODY, int(clock()))
        result = await verifier.verify(header, BODY + b"x", ["secret"], TTL_MS)
        assert result.reason == "invalid_signature"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header,reason", [
        (None, "missing_signature"),
        ("", "missing_signature"),
        ("abc", "invalid_signature_format"),
        ("1:2:3", "invalid_signature_format"),
        ("123:", "invalid_signature_format"),
        ("notanumber:abcdef", "invalid_signature_timestamp"),
    ])
    async def test_malformed_headers(self, verifier, header, reason):
        result = await verifier.verify(header, BODY, ["secret"], TTL_MS)
        assert result.reason == reason

    @pytest.mark.asyncio
    async def test_no_secrets_is_misconfiguration(self, verifier, clock):
        header = SignatureFactory("secret").header(BODY, int(clock()))
        with pytest.raises(ConfigurationError) as exc_info:
            await verifier.verify(header, BODY, [], TTL_MS)
        assert exc_info.value.kind == "server_misconfigured"


class TestReplayGuard:
    """Test cases for ReplayGuard."""

    @pytest.mark.asyncio
    async def test_record_expires_with_ttl(self):
        clock = FakeClock()
        guard = ReplayGuard(CoordinationBackends(LocalCoordinationStore(clock=clock)))

        assert await guard.check_and_record("abc", 1000) is False
        assert await guard.check_and_record("abc", 1000) is True
        clock.advance(1000)
        assert await guard.check_and_record("abc", 1000) is False
