"""
Shared metrics configuration for the clinic scheduling service.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "scheduling":
            self._setup_scheduling_metrics()

    def _setup_scheduling_metrics(self):
        """Set up scheduling-specific metrics."""
        self._metrics["rule_checks_total"] = Counter(
            "rule_checks_total",
            "Total ad-hoc rule checks",
            ["decision"],
            registry=self.registry
        )

        self._metrics["slots_total"] = Counter(
            "slots_total",
            "Total slots produced by day queries",
            ["status"],
            registry=self.registry
        )

        self._metrics["day_query_duration_seconds"] = Histogram(
            "day_query_duration_seconds",
            "Day slot query duration in seconds",
            ["phase"],
            registry=self.registry
        )

        self._metrics["rules_classified_total"] = Counter(
            "rules_classified_total",
            "Rules classified per day query",
            ["classification"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_rule_check(self, blocked: bool):
        """Record the decision of an ad-hoc rule check."""
        self.increment_counter("rule_checks_total", decision="blocked" if blocked else "allowed")

    def record_slots(self, available: int, blocked: int):
        """Record slot counts of a day query."""
        if "slots_total" in self._metrics:
            self._metrics["slots_total"].labels(status="available").inc(available)
            self._metrics["slots_total"].labels(status="blocked").inc(blocked)

    def record_classification(self, day_invariant: int, time_variant: int):
        """Record rule classification counts of a day query."""
        if "rules_classified_total" in self._metrics:
            self._metrics["rules_classified_total"].labels(classification="day_invariant").inc(day_invariant)
            self._metrics["rules_classified_total"].labels(classification="time_variant").inc(time_variant)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
