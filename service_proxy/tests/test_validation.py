"""
Unit tests for request validation, sanitization and prompt parsing.
"""

import json
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_proxy.app.domain.validation import (
    ValidationLimits,
    estimate_units,
    parse_card_request,
    sanitize_raw_text,
    validate_request,
)
from service_proxy.app.domain.prompts import (
    build_request_body,
    extract_candidate_text,
    extract_json_from_text,
    format_card_prompt,
)
from shared.errors import ValidationError
from shared.test_helpers import TestDataFactory


def kind_of(body, limits=None):
    with pytest.raises(ValidationError) as exc_info:
        validate_request(body, limits)
    return exc_info.value.kind


class TestSanitization:
    """Test cases for text sanitization and estimation."""

    def test_sanitize_removes_control_chars_and_collapses_whitespace(self):
        raw = "Name:\tJohn\nDoe\x00  Company:  ACME   \n\nEmail:   john@acme.com\r\n"
        assert sanitize_raw_text(raw) == "Name: John Doe Company: ACME Email: john@acme.com"

    def test_sanitize_non_string(self):
        assert sanitize_raw_text(None) == ""
        assert sanitize_raw_text(42) == ""

    def test_estimate_units(self):
        assert estimate_units("abcd") == 1
        assert estimate_units("abcdefgh") == 2
        assert estimate_units("abcdefghi") == 3
        assert estimate_units("a") == 1
        assert estimate_units("") == 0


class TestValidateRequest:
    """Test cases for body validation."""

    def test_valid_body(self):
        validate_request(TestDataFactory.card_body(template=["Name", "Email (work)", "first-name"]))

    def test_missing_body_and_raw_text(self):
        assert kind_of(None) == "missing_body"
        assert kind_of([1, 2]) == "missing_body"
        assert kind_of({}) == "missing_raw_text"
        assert kind_of({"raw_text": 5}) == "missing_raw_text"

    def test_too_many_fields(self):
        body = {f"k{i}": i for i in range(21)}
        body["raw_text"] = "x"
        assert kind_of(body) == "too_many_fields"

    def test_raw_text_too_long(self):
        assert kind_of({"raw_text": "x" * 4001}) == "raw_text_too_long"
        validate_request({"raw_text": "x" * 4000})

    def test_session_id_too_long(self):
        assert kind_of({"raw_text": "x", "session_id": "s" * 257}) == "session_id_too_long"

    def test_template_rules(self):
        assert kind_of({"raw_text": "x", "template": "Name"}) == "invalid_template_format"
        assert kind_of({"raw_text": "x", "template": ["a"] * 41}) == "too_many_template_headers"
        assert kind_of({"raw_text": "x", "template": ["Name", 3]}) == "invalid_template_header_type"
        assert kind_of({"raw_text": "x", "template": [""]}) == "template_header_length"
        assert kind_of({"raw_text": "x", "template": ["a" * 65]}) == "template_header_length"
        assert kind_of({"raw_text": "x", "template": ["Good", "Bad/Name"]}) == "template_header_invalid_chars"
        assert kind_of({"raw_text": "x", "template": ["Name\n"]}) == "template_header_invalid_chars"

    def test_custom_limits(self):
        limits = ValidationLimits(max_raw_text_len=10)
        assert kind_of({"raw_text": "x" * 11}, limits) == "raw_text_too_long"


class TestParseCardRequest:
    """Test cases for parsing raw bodies."""

    def test_parse(self):
        raw = json.dumps({"raw_text": "  John\t\tDoe ", "session_id": "s1", "template": ["Name"]}).encode()
        card = parse_card_request(raw)
        assert card.raw_text == "John Doe"
        assert card.session_id == "s1"
        assert card.template == ["Name"]

    def test_empty_session_id_treated_as_absent(self):
        card = parse_card_request(b'{"raw_text": "x", "session_id": ""}')
        assert card.session_id is None

    @pytest.mark.parametrize("raw,kind", [
        (b"", "missing_body"),
        (b"   ", "missing_body"),
        (b"{not json", "invalid_json"),
        (b"null", "missing_body"),
    ])
    def test_parse_errors(self, raw, kind):
        with pytest.raises(ValidationError) as exc_info:
            parse_card_request(raw)
        assert exc_info.value.kind == kind


class TestPrompts:
    """Test cases for prompt building and response parsing."""

    def test_format_card_prompt_uses_template(self):
        assert "Name, Email" in format_card_prompt("text", ["Name", "Email"])
        assert "Name, Company, Email, Phone, Website, Address" in format_card_prompt("text")

    def test_build_request_body(self):
        assert build_request_body("hi") == {"contents": [{"parts": [{"text": "hi"}]}]}

    def test_extract_candidate_text(self):
        assert extract_candidate_text(TestDataFactory.gemini_response("hello")) == "hello"
        assert extract_candidate_text({"candidates": []}) == ""
        assert extract_candidate_text(None) == ""

    def test_extract_json_from_noisy_text(self):
        noisy = 'Some preface text. {"name":"John","email":"john@acme.com"} Some trailing text.'
        assert extract_json_from_text(noisy) == {"name": "John", "email": "john@acme.com"}

    def test_extract_json_from_fenced_output(self):
        fenced = '```json\n{"name": "Jane", "phone": "+1"}\n```'
        assert extract_json_from_text(fenced) == {"name": "Jane", "phone": "+1"}

    def test_extract_json_malformed(self):
        assert extract_json_from_text('prefix {"Name": John,} suffix') is None
        assert extract_json_from_text("no json here") is None
        assert extract_json_from_text("") is None
