"""
Shared utilities for the card proxy access layer.

This package aggregates common building blocks consumed by the proxy service:

- config: Proxy configuration via pydantic-settings
- logging: Structured logging with request/identity correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff policy for downstream calls
- secrets_manager: Downstream key lookup (env / encrypted file)
- base_service: FastAPI service scaffolding

Any cross-cutting logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""
