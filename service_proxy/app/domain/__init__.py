"""
Domain package for the Proxy Service.

Holds the admission pipeline that every protected route runs through,
request validation and sanitization, and the prompt text sent to the
downstream AI service.
"""

from .pipeline import (
    AdmissionPipeline,
    DownstreamOutcome,
    InboundRequest,
    PipelineResult,
    PreparedRequest,
    resolve_identity,
)
from .validation import (
    CardRequest,
    ValidationLimits,
    estimate_units,
    parse_card_request,
    sanitize_raw_text,
    validate_request,
)

__all__ = [
    "AdmissionPipeline",
    "DownstreamOutcome",
    "InboundRequest",
    "PipelineResult",
    "PreparedRequest",
    "resolve_identity",
    "CardRequest",
    "ValidationLimits",
    "estimate_units",
    "parse_card_request",
    "sanitize_raw_text",
    "validate_request",
]
