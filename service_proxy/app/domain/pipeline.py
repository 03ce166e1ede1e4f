"""
Admission pipeline: the ordered sequence of checks every protected request
passes before (and after) the downstream call.

Order:
1. Authentication guard
2. Signature and replay check (when enforced)
3. Body parsing and validation, usage estimate, identity resolution
4. Rate limit
5. Quota reservation
6. Downstream work
7. Quota adjustment with actual usage

Admission denials raise typed AccessLayerExceptions. A downstream failure
is returned as an unsuccessful PipelineResult and keeps the reservation.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from shared.config import ProxyConfig
from shared.errors import AuthError, DownstreamError, QuotaExceededError, RateLimitError
from shared.logging import get_logger, set_identity
from shared.metrics import MetricsCollector
from ..adapters import ResilientDownstreamClient
from ..quota import QuotaLedger
from ..ratelimit import SlidingWindowRateLimiter
from ..security import AuthGuard, SignatureVerifier


@dataclass
class InboundRequest:
    """Transport-neutral view of an HTTP request. Header names are lower-case."""

    headers: Dict[str, str]
    raw_body: bytes
    client_host: Optional[str] = None

    @classmethod
    def from_parts(cls, headers: Mapping[str, str], raw_body: bytes,
                   client_host: Optional[str] = None) -> "InboundRequest":
        return cls({k.lower(): v for k, v in headers.items()}, raw_body, client_host)


@dataclass
class PreparedRequest:
    session_id: Optional[str]
    estimated_units: int
    payload: Any = None


@dataclass
class DownstreamOutcome:
    data: Dict[str, Any]
    actual_units: int


@dataclass
class PipelineResult:
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    status_code: int = 200
    identity: Optional[str] = None


Prepare = Callable[[bytes], PreparedRequest]
Invoke = Callable[[ResilientDownstreamClient, PreparedRequest], Awaitable[DownstreamOutcome]]


def resolve_identity(session_id: Optional[str], user_info: Optional[Dict[str, Any]],
                     client_host: Optional[str]) -> str:
    """Session id, else authenticated user id, else client address, else 'anonymous'."""
    if session_id:
        return session_id
    if user_info and user_info.get("user_id"):
        return str(user_info["user_id"])
    if client_host:
        return client_host
    return "anonymous"


class AdmissionPipeline:
    """Runs a protected request through every admission check."""

    def __init__(self, config: ProxyConfig, auth_guard: AuthGuard, verifier: SignatureVerifier,
                 rate_limiter: SlidingWindowRateLimiter, ledger: QuotaLedger,
                 client: ResilientDownstreamClient, metrics: Optional[MetricsCollector] = None):
        self.config = config
        self.auth_guard = auth_guard
        self.verifier = verifier
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.client = client
        self.metrics = metrics
        self.logger = get_logger("proxy.pipeline")

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_admission(outcome)

    async def run(self, inbound: InboundRequest, prepare: Prepare, invoke: Invoke) -> PipelineResult:
        try:
            user_info = await self.auth_guard.authenticate(inbound.headers)
        except AuthError:
            self._record("auth_rejected")
            raise

        if self.config.signature_enforced:
            await self._check_signature(inbound)

        prepared = prepare(inbound.raw_body)
        identity = resolve_identity(prepared.session_id, user_info, inbound.client_host)
        set_identity(identity)

        decision = await self.rate_limiter.check(
            identity, self.config.rate_limit_window_ms, self.config.rate_limit_max
        )
        if not decision.allowed:
            self._record("rate_limited")
            raise RateLimitError(details={"reason": decision.reason, "retry_after_ms": decision.retry_after_ms})

        quota = await self.ledger.reserve(identity, prepared.estimated_units, 1)
        if not quota.allowed:
            self._record("quota_exceeded")
            raise QuotaExceededError(details={"reason": quota.reason})

        self._record("admitted")

        try:
            outcome = await invoke(self.client, prepared)
        except DownstreamError as e:
            self._record("downstream_failed")
            self.logger.error("downstream_failed", identity=identity, error=e.kind, message=e.message)
            return PipelineResult(ok=False, error=e.kind, status_code=e.status_code, identity=identity)

        await self.ledger.adjust(identity, outcome.actual_units - prepared.estimated_units)
        return PipelineResult(ok=True, data=outcome.data, identity=identity)

    async def _check_signature(self, inbound: InboundRequest) -> None:
        result = await self.verifier.verify(
            inbound.headers.get(self.config.signature_header.lower()),
            inbound.raw_body,
            self.config.signature_secret_list,
            self.config.signature_ttl_ms,
        )
        if not result.accepted:
            self._record("signature_rejected")
            raise AuthError(result.reason)
