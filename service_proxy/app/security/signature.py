"""
HMAC request signatures with timestamp freshness and replay protection.

Header format: ``<unix-ms-timestamp>:<hex-hmac-sha256>`` where the MAC covers
the bytes ``b"<timestamp>:" + raw_body``.
"""

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from shared.errors import ConfigurationError
from shared.logging import get_logger
from ..store import CoordinationBackends


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class SignatureAccepted:
    matched_hash: str
    secret_index: int

    @property
    def accepted(self) -> bool:
        return True


@dataclass(frozen=True)
class SignatureRejected:
    reason: str

    @property
    def accepted(self) -> bool:
        return False


SignatureResult = Union[SignatureAccepted, SignatureRejected]


def compute_signature(secret: str, timestamp: int, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of ``b"<timestamp>:" + raw_body``."""
    payload = f"{timestamp}:".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class ReplayGuard:
    """Remembers accepted signatures until they could no longer pass the freshness check."""

    KEY_PREFIX = "sig:"

    def __init__(self, backends: CoordinationBackends):
        self.backends = backends

    async def check_and_record(self, digest: str, ttl_ms: int) -> bool:
        """Record the digest. Returns True if it had already been seen (a replay)."""
        key = f"{self.KEY_PREFIX}{digest}"

        async def _record(store) -> bool:
            return await store.set_if_absent(key, "1", ttl_ms)

        created = await self.backends.run("replay_guard", _record)
        return not created


class SignatureVerifier:
    """Validates signature headers against an ordered list of candidate secrets."""

    def __init__(self, replay_guard: ReplayGuard, clock: Optional[Callable[[], float]] = None):
        self.replay_guard = replay_guard
        self._clock = clock or _now_ms
        self.logger = get_logger("proxy.signature")

    async def verify(self, header_value: Optional[str], raw_body: bytes,
                     secrets: Sequence[str], ttl_ms: int) -> SignatureResult:
        """Verify a signature header.

        Rejection reasons: ``missing_signature``, ``invalid_signature_format``,
        ``invalid_signature_timestamp``, ``signature_expired``,
        ``invalid_signature``, ``replay``.

        Raises:
            ConfigurationError: no secrets are configured.
        """
        if not secrets:
            self.logger.error("signature_config_missing")
            raise ConfigurationError("signature secret required")

        if not header_value:
            return SignatureRejected("missing_signature")

        parts = header_value.split(":")
        if len(parts) != 2 or not parts[1]:
            return SignatureRejected("invalid_signature_format")

        try:
            timestamp = int(parts[0].strip())
        except ValueError:
            return SignatureRejected("invalid_signature_timestamp")

        if abs(self._clock() - timestamp) > ttl_ms:
            return SignatureRejected("signature_expired")

        provided = parts[1].strip().encode("utf-8")
        for index, secret in enumerate(secrets):
            expected = compute_signature(secret, timestamp, raw_body)
            if hmac.compare_digest(expected.encode("ascii"), provided):
                if await self.replay_guard.check_and_record(expected, ttl_ms):
                    self.logger.warning("signature_replay", timestamp=timestamp)
                    return SignatureRejected("replay")
                if index > 0:
                    self.logger.info("signature_matched_rotated_secret", secret_index=index)
                return SignatureAccepted(matched_hash=expected, secret_index=index)

        return SignatureRejected("invalid_signature")
