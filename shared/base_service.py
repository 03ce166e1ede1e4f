"""
Base service class for the card proxy access layer.

Wires the pieces every service shares: configuration, structured logging,
Prometheus metrics, CORS, request correlation, the ``{ok: false, error}``
failure contract, and the /health and /metrics endpoints.
"""

import math
import os
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from shared.config import ProxyConfig, get_config
from shared.errors import AccessLayerException, AuthError, ErrorResponse, RateLimitError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

REQUEST_ID_HEADER = "x-request-id"
SERVICE_VERSION = "1.0.0"


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: Optional[ProxyConfig] = None):
        self.service_name = service_name
        self.config = config or get_config()
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._started_at = time.monotonic()

        configure_logging(service_name, self.config.log_level)

        self.app = FastAPI(
            title=f"{self.service_name.title()} Service",
            description="Card proxy access layer",
            version=SERVICE_VERSION,
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url=None,
            lifespan=self._lifespan,
        )
        self._setup_middleware()
        self._setup_error_handlers()
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.on_startup()
        try:
            yield
        finally:
            await self.on_shutdown()

    async def on_startup(self):
        """Startup hook. Override in subclasses."""

    async def on_shutdown(self):
        """Shutdown hook. Override in subclasses."""

    def _setup_middleware(self):
        origins = self.config.allowed_origin_list
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins or ["*"],
            allow_credentials=origins is not None,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def correlate_and_time(request: Request, call_next):
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER), route=request.url.path)
            started = time.perf_counter()
            try:
                response = await call_next(request)
                duration = time.perf_counter() - started
                response.headers[REQUEST_ID_HEADER] = request_id
                self.metrics.record_http_request(request.method, request.url.path,
                                                 response.status_code, duration)
                self.logger.info(
                    "http_request",
                    method=request.method,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2),
                )
                return response
            finally:
                clear_context()

    def _setup_error_handlers(self):
        """Map failures onto the ``{ok: false, error: <kind>}`` contract."""

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            if exc.status_code >= 500:
                self.logger.error("request_failed", error=exc.kind, message=exc.message, details=exc.details)
            elif isinstance(exc, AuthError):
                self.logger.warning("request_unauthorized", error=exc.kind)
            else:
                self.logger.info("request_rejected", error=exc.kind, status_code=exc.status_code,
                                 details=exc.details or None)

            headers = None
            retry_after_ms = exc.details.get("retry_after_ms") if isinstance(exc, RateLimitError) else None
            if retry_after_ms:
                headers = {"Retry-After": str(math.ceil(retry_after_ms / 1000))}
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump(exclude_none=True),
                headers=headers,
            )

        @self.app.exception_handler(Exception)
        async def unhandled_exception_handler(request: Request, exc: Exception):
            self.logger.error("unhandled_exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error="internal_error").model_dump(exclude_none=True),
            )

    def _setup_routes(self):

        @self.app.get("/health")
        async def health_check():
            """Liveness plus a summary of dependency state."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("health_check_failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)},
                )
            self.metrics.record_health_check("ok")
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": round(time.monotonic() - self._started_at, 3),
                "dependencies": dependencies,
                "version": SERVICE_VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
