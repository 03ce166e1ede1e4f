"""
Request body validation, raw text sanitization and usage-unit estimation.
"""

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.config import ProxyConfig
from shared.errors import ValidationError

HEADER_NAME_REGEX = re.compile(r"^[\w \-.()]{1,64}$", re.ASCII)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ValidationLimits:
    max_raw_text_len: int = 4000
    max_template_headers: int = 40
    max_template_header_len: int = 64
    max_body_keys: int = 20
    max_session_id_len: int = 256

    @classmethod
    def from_config(cls, config: ProxyConfig) -> "ValidationLimits":
        return cls(
            max_raw_text_len=config.max_raw_text_len,
            max_template_headers=config.max_template_headers,
            max_template_header_len=config.max_template_header_len,
            max_body_keys=config.max_body_keys,
            max_session_id_len=config.max_session_id_len,
        )


@dataclass
class CardRequest:
    """A validated request body with sanitized text."""

    raw_text: str
    session_id: Optional[str] = None
    template: List[str] = field(default_factory=list)


def sanitize_raw_text(raw: Any) -> str:
    """Replace control characters with spaces, trim, collapse whitespace runs."""
    if not raw or not isinstance(raw, str):
        return ""
    return _WHITESPACE.sub(" ", _CONTROL_CHARS.sub(" ", raw).strip())


def estimate_units(text: Any) -> int:
    """Rough usage estimate: one unit per four characters, at least one."""
    if not text or not isinstance(text, str):
        return 0
    return max(1, math.ceil(len(text) / 4))


def parse_json_body(raw_body: bytes) -> Any:
    if not raw_body or not raw_body.strip():
        raise ValidationError("missing_body")
    try:
        return json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError("invalid_json") from e


def validate_request(body: Any, limits: Optional[ValidationLimits] = None) -> None:
    """Raise ValidationError naming the first problem found in body."""
    limits = limits or ValidationLimits()

    if not isinstance(body, dict):
        raise ValidationError("missing_body")
    if len(body) > limits.max_body_keys:
        raise ValidationError("too_many_fields")

    raw = body.get("raw_text")
    if not raw or not isinstance(raw, str):
        raise ValidationError("missing_raw_text")
    if len(raw) > limits.max_raw_text_len:
        raise ValidationError("raw_text_too_long")

    session_id = body.get("session_id")
    if isinstance(session_id, str) and len(session_id) > limits.max_session_id_len:
        raise ValidationError("session_id_too_long")

    if "template" in body:
        template = body["template"]
        if not isinstance(template, list):
            raise ValidationError("invalid_template_format")
        if len(template) > limits.max_template_headers:
            raise ValidationError("too_many_template_headers")
        for header in template:
            if not isinstance(header, str):
                raise ValidationError("invalid_template_header_type")
            if len(header) == 0 or len(header) > limits.max_template_header_len:
                raise ValidationError("template_header_length")
            if not HEADER_NAME_REGEX.fullmatch(header):
                raise ValidationError("template_header_invalid_chars")


def parse_card_request(raw_body: bytes, limits: Optional[ValidationLimits] = None) -> CardRequest:
    """Parse, validate and sanitize a request body."""
    body: Dict[str, Any] = parse_json_body(raw_body)
    validate_request(body, limits)

    session_id = body.get("session_id")
    return CardRequest(
        raw_text=sanitize_raw_text(body["raw_text"]),
        session_id=session_id if isinstance(session_id, str) and session_id else None,
        template=list(body.get("template") or []),
    )
