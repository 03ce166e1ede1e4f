"""
Structured logging for the card proxy access layer.

Every event is a JSON line carrying the service name, the request id and,
once resolved, the admission identity. Credential-bearing fields are
redacted before rendering.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
identity_var: ContextVar[Optional[str]] = ContextVar('identity', default=None)
route_var: ContextVar[Optional[str]] = ContextVar('route', default=None)

REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset({
    "authorization",
    "api_key",
    "key",
    "token",
    "signature",
    "x-proxy-signature",
    "x-app-token",
    "x-goog-api-key",
    "secret",
})


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog JSON output on stdout for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_service_context,
            add_correlation_context,
            redact_sensitive_fields,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Derive the service from a dotted logger name such as ``proxy.quota``."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach request id, route and identity from the current context."""
    for name, var in (("request_id", request_id_var), ("route", route_var), ("identity", identity_var)):
        value = var.get()
        if value and name not in event_dict:
            event_dict[name] = value
    return event_dict


def redact_sensitive_fields(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Replace credential values, including inside a nested ``headers`` dict."""
    for field in list(event_dict):
        if field.lower() in SENSITIVE_FIELDS and event_dict[field]:
            event_dict[field] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            k: (REDACTED if k.lower() in SENSITIVE_FIELDS else v) for k, v in headers.items()
        }
    return event_dict


def set_request_id(request_id: Optional[str] = None, route: Optional[str] = None) -> str:
    """Start a request's logging context. Generates an id when none is given."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    route_var.set(route)
    return request_id


def set_identity(identity: Optional[str] = None):
    """Set the admission identity in logging context."""
    if identity:
        identity_var.set(identity)


def clear_context():
    request_id_var.set(None)
    identity_var.set(None)
    route_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
