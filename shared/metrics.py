"""
Prometheus metrics for the card proxy access layer.

Each collector owns its registry, so several services (or test apps) can
live in one process without duplicate-registration errors.
"""

from contextlib import contextmanager
from typing import Any, Dict, Optional
import time

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest

DOWNSTREAM_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0)


class MetricsCollector:
    """Counters and histograms for HTTP traffic and admission decisions."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        info = Info("service", "Service information", registry=self.registry)
        info.info({"service": service_name, "version": "1.0.0"})

        self._counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status_code"])
        self._histogram("http_request_duration_seconds", "HTTP request duration in seconds",
                        ["method", "endpoint"])
        self._counter("health_check_total", "Health check requests", ["status"])

        self._counter("admission_decisions_total", "Admission decisions by outcome", ["outcome"])
        self._counter("store_fallbacks_total",
                      "Coordination store operations served by the local fallback", ["operation"])
        self._counter("downstream_retries_total", "Downstream call retries by reason", ["reason"])
        self._histogram("downstream_call_duration_seconds",
                        "Downstream call duration in seconds, retries included",
                        buckets=DOWNSTREAM_BUCKETS)

    def _counter(self, name: str, documentation: str, labels=()):
        self._metrics[name] = Counter(name, documentation, list(labels), registry=self.registry)

    def _histogram(self, name: str, documentation: str, labels=(), **kwargs):
        self._metrics[name] = Histogram(name, documentation, list(labels), registry=self.registry, **kwargs)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_admission(self, outcome: str):
        """Outcomes: admitted, auth_rejected, signature_rejected, rate_limited,
        quota_exceeded, downstream_failed."""
        self._metrics["admission_decisions_total"].labels(outcome=outcome).inc()

    def record_store_fallback(self, operation: str):
        self._metrics["store_fallbacks_total"].labels(operation=operation).inc()

    def record_downstream_retry(self, reason: str):
        self._metrics["downstream_retries_total"].labels(reason=reason).inc()

    @contextmanager
    def time_operation(self, metric_name: str, **labels):
        """Observe the duration of the wrapped block on a histogram."""
        started = time.perf_counter()
        try:
            yield
        finally:
            metric = self._metrics.get(metric_name)
            if metric is not None:
                (metric.labels(**labels) if labels else metric).observe(time.perf_counter() - started)

    def render(self) -> bytes:
        """Render the registry in Prometheus exposition format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
