"""
Unit tests for log redaction, correlation context and metrics rendering.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.logging import (
    REDACTED,
    add_correlation_context,
    add_service_context,
    clear_context,
    redact_sensitive_fields,
    set_identity,
    set_request_id,
)
from shared.metrics import MetricsCollector


class TestLoggingProcessors:
    """Test cases for structlog processors."""

    def test_sensitive_fields_redacted(self):
        event = redact_sensitive_fields(None, "info", {
            "event": "downstream_call",
            "x-goog-api-key": "AIza-secret",
            "headers": {"Authorization": "Bearer abc", "content-type": "application/json"},
            "identity": "s1",
        })

        assert event["x-goog-api-key"] == REDACTED
        assert event["headers"] == {"Authorization": REDACTED, "content-type": "application/json"}
        assert event["identity"] == "s1"

    def test_correlation_context(self):
        try:
            request_id = set_request_id(route="/format-card")
            set_identity("session-9")

            event = add_correlation_context(None, "info", {"event": "x"})

            assert event["request_id"] == request_id
            assert event["route"] == "/format-card"
            assert event["identity"] == "session-9"
        finally:
            clear_context()

        assert "identity" not in add_correlation_context(None, "info", {"event": "x"})

    def test_service_from_logger_name(self):
        assert add_service_context(None, "info", {"logger": "proxy.quota"})["service"] == "proxy"
        assert "service" not in add_service_context(None, "info", {"logger": "root"})


class TestMetricsCollector:
    """Test cases for MetricsCollector."""

    def test_collectors_are_isolated(self):
        first = MetricsCollector("proxy")
        second = MetricsCollector("proxy")

        first.record_admission("admitted")

        assert b'admission_decisions_total{outcome="admitted"} 1.0' in first.render()
        assert b'outcome="admitted"' not in second.render()

    def test_time_operation(self):
        metrics = MetricsCollector("proxy")
        with metrics.time_operation("downstream_call_duration_seconds"):
            pass

        assert b"downstream_call_duration_seconds_count 1.0" in metrics.render()

    def test_fallback_and_retry_counters(self):
        metrics = MetricsCollector("proxy")
        metrics.record_store_fallback("rate_limit")
        metrics.record_downstream_retry("overload")

        rendered = metrics.render()
        assert b'store_fallbacks_total{operation="rate_limit"} 1.0' in rendered
        assert b'downstream_retries_total{reason="overload"} 1.0' in rendered
