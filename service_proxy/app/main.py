"""
Card Proxy service: admission layer in front of the AI completion service.
"""

import json
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ProxyConfig
from shared.errors import ConfigurationError, DownstreamError, ValidationError
from shared.retry import RetryConfig
from shared.secrets_manager import SecretsManager
from .adapters import ResilientDownstreamClient
from .domain import (
    AdmissionPipeline,
    DownstreamOutcome,
    InboundRequest,
    PipelineResult,
    PreparedRequest,
    ValidationLimits,
    estimate_units,
    parse_card_request,
)
from .domain.prompts import (
    build_request_body,
    extract_candidate_text,
    extract_json_from_text,
    finalize_prompt,
    format_card_prompt,
    refine_prompt,
    structure_prompt,
)
from .quota import QuotaLedger
from .ratelimit import SlidingWindowRateLimiter
from .security import AuthGuard, ReplayGuard, SignatureVerifier
from .security.auth import TokenVerifier
from .store import CoordinationBackends, build_backends

StopCheck = Callable[[], Awaitable[bool]]


class ProxyService(BaseService):
    """Proxy service implementation."""

    def __init__(self, config: Optional[ProxyConfig] = None,
                 backends: Optional[CoordinationBackends] = None,
                 clock: Optional[Callable[[], float]] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 secrets: Optional[SecretsManager] = None,
                 token_verifier: Optional[TokenVerifier] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
                 rand: Optional[Callable[[], float]] = None):
        super().__init__("proxy", config)

        self.backends = backends or build_backends(self.config, metrics=self.metrics, clock=clock)
        self.secrets = secrets or SecretsManager()
        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.downstream_timeout_seconds)
        self.limits = ValidationLimits.from_config(self.config)

        client_kwargs: Dict[str, Any] = {"metrics": self.metrics, "rand": rand}
        if sleep is not None:
            client_kwargs["sleep"] = sleep
        self.downstream = ResilientDownstreamClient(
            self.http_client, RetryConfig.from_config(self.config), **client_kwargs
        )

        self.auth_guard = AuthGuard(self.config, token_verifier=token_verifier)
        self.verifier = SignatureVerifier(ReplayGuard(self.backends), clock=clock)
        self.rate_limiter = SlidingWindowRateLimiter(
            self.backends,
            ban_base_ms=self.config.ban_base_ms,
            ban_max_ms=self.config.ban_max_ms,
            clock=clock,
        )
        self.ledger = QuotaLedger(
            self.backends,
            max_units=self.config.quota_max_units,
            max_requests=self.config.quota_max_requests,
            period_ms=self.config.quota_period_ms,
        )
        self.pipeline = AdmissionPipeline(
            self.config,
            self.auth_guard,
            self.verifier,
            self.rate_limiter,
            self.ledger,
            self.downstream,
            metrics=self.metrics,
        )

        self._setup_proxy_routes()

    async def on_startup(self):
        if self.config.signature_enforced and not self.config.signature_secret_list:
            self.logger.error("signature_config_missing",
                              message="signature enforced but no secret configured")
        self.logger.info(
            "proxy_started",
            shared_store=self.backends.has_shared,
            signature_enforced=self.config.signature_enforced,
            require_auth=self.config.require_auth,
        )

    async def on_shutdown(self):
        await self.http_client.aclose()
        await self.backends.close()

    def _setup_proxy_routes(self):
        """Set up proxy routes."""

        @self.app.post("/format-card")
        async def format_card(request: Request):
            """Turn business card text into structured JSON."""
            result = await self.pipeline.run(
                await self._inbound(request),
                self._prepare_format_card,
                lambda client, prepared: self._invoke_format_card(client, prepared, request.is_disconnected),
            )
            return self._respond(result)

        @self.app.post("/process-ocr")
        async def process_ocr(request: Request):
            """Refine, structure and finalize OCR text in three downstream calls."""
            result = await self.pipeline.run(
                await self._inbound(request),
                self._prepare_process_ocr,
                lambda client, prepared: self._invoke_process_ocr(client, prepared, request.is_disconnected),
            )
            return self._respond(result)

        @self.app.get("/quota-status/{session_id}")
        async def quota_status(session_id: str, request: Request):
            """Current quota usage for a session."""
            inbound = await self._inbound(request)
            await self.auth_guard.authenticate(inbound.headers)
            status = await self.ledger.status(session_id)
            return {"ok": True, "status": status.to_dict()}

        @self.app.get("/health/redis")
        async def redis_health():
            """Coordination store reachability."""
            if not self.backends.has_shared:
                return JSONResponse(status_code=503, content={"ok": False, "error": "redis_unconfigured"})
            if not await self.backends.shared.ping():
                return JSONResponse(status_code=503, content={"ok": False, "error": "redis_unavailable"})
            return {"ok": True}

    async def _inbound(self, request: Request) -> InboundRequest:
        return InboundRequest.from_parts(
            request.headers,
            await self._read_body(request),
            request.client.host if request.client else None,
        )

    async def _read_body(self, request: Request) -> bytes:
        """Read the request body, refusing anything over max_body_bytes."""
        limit = self.config.max_body_bytes
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            raise ValidationError("body_too_large", status_code=413)

        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise ValidationError("body_too_large", status_code=413)
        return bytes(body)

    @staticmethod
    def _respond(result: PipelineResult):
        if result.ok:
            return {"ok": True, **result.data}
        return JSONResponse(status_code=result.status_code, content={"ok": False, "error": result.error})

    def _downstream_key(self) -> str:
        key = self.secrets.get_secret(self.config.downstream_key_name)
        if not key:
            self.logger.error("downstream_key_missing", key_name=self.config.downstream_key_name)
            raise ConfigurationError("downstream API key not configured")
        return key

    def _prepare_format_card(self, raw_body: bytes) -> PreparedRequest:
        card = parse_card_request(raw_body, self.limits)
        return PreparedRequest(
            session_id=card.session_id,
            estimated_units=estimate_units(card.raw_text),
            payload={"card": card, "key": self._downstream_key()},
        )

    def _prepare_process_ocr(self, raw_body: bytes) -> PreparedRequest:
        card = parse_card_request(raw_body, self.limits)
        return PreparedRequest(
            session_id=card.session_id,
            estimated_units=estimate_units(card.raw_text) * 3,
            payload={"card": card, "key": self._downstream_key()},
        )

    async def _generate(self, client: ResilientDownstreamClient, key: str, prompt: str,
                        failure_kind: str, should_stop: Optional[StopCheck] = None) -> str:
        """One generateContent call. Returns the candidate text."""
        try:
            response = await client.call(
                "POST",
                self.config.downstream_url,
                json=build_request_body(prompt),
                headers={"x-goog-api-key": key},
                should_stop=should_stop,
            )
        except httpx.HTTPError as e:
            raise DownstreamError(failure_kind, f"downstream request failed: {e}") from e

        if response.status_code >= 400:
            raise DownstreamError(failure_kind, f"downstream returned {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise DownstreamError(failure_kind, "downstream returned invalid JSON") from e
        return extract_candidate_text(body)

    async def _invoke_format_card(self, client: ResilientDownstreamClient, prepared: PreparedRequest,
                                  should_stop: Optional[StopCheck] = None) -> DownstreamOutcome:
        card, key = prepared.payload["card"], prepared.payload["key"]
        text = await self._generate(client, key, format_card_prompt(card.raw_text, card.template),
                                    "parse_error", should_stop)
        data = extract_json_from_text(text)
        if data is None:
            raise DownstreamError("parse_error", "Failed to parse JSON from AI output")

        actual = estimate_units(text or json.dumps(data))
        self.logger.info("format_card_success", units=actual)
        return DownstreamOutcome(data={"data": data, "source": "ai"}, actual_units=actual)

    async def _invoke_process_ocr(self, client: ResilientDownstreamClient, prepared: PreparedRequest,
                                  should_stop: Optional[StopCheck] = None) -> DownstreamOutcome:
        card, key = prepared.payload["card"], prepared.payload["key"]

        cleaned_text = (await self._generate(client, key, refine_prompt(card.raw_text),
                                             "refine_failed", should_stop)).strip()
        if not cleaned_text:
            raise DownstreamError("refine_failed", "refinement returned no text")

        structured_text = await self._generate(client, key, structure_prompt(cleaned_text),
                                               "structure_failed", should_stop)
        structured = extract_json_from_text(structured_text)
        if structured is None:
            raise DownstreamError("structure_failed", "structuring returned no JSON object")

        final_text = ""
        try:
            final_text = await self._generate(client, key, finalize_prompt(structured),
                                              "finalize_failed", should_stop)
            final = extract_json_from_text(final_text)
        except DownstreamError as e:
            self.logger.warning("finalize_failed", message=e.message)
            final = None
        if final is None:
            final = structured

        actual = estimate_units(" ".join([cleaned_text, structured_text, final_text]))
        return DownstreamOutcome(
            data={"cleaned_text": cleaned_text, "structured_json": structured, "final_json": final},
            actual_units=actual,
        )

    async def _check_dependencies(self) -> Dict[str, str]:
        if not self.backends.has_shared:
            return {"coordination_store": "local"}
        healthy = await self.backends.shared.ping()
        return {"coordination_store": "redis" if healthy else "local_fallback"}


def create_app(config: Optional[ProxyConfig] = None, **overrides):
    """Create FastAPI application."""
    service = ProxyService(config, **overrides)
    return service.app


if __name__ == "__main__":
    service = ProxyService()
    service.run()
