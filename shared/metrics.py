"""
Shared metrics configuration for Share Gate.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
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
            ["method", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Access decisions
        self._metrics["access_decisions_total"] = Counter(
            "access_decisions_total",
            "Total access decisions",
            ["outcome", "reason"],
            registry=self.registry
        )

        self._metrics["access_evaluation_duration_seconds"] = Histogram(
            "access_evaluation_duration_seconds",
            "Rule list evaluation duration in seconds",
            registry=self.registry
        )

        self._metrics["lookup_failures_total"] = Counter(
            "lookup_failures_total",
            "Total external lookup failures",
            ["source"],
            registry=self.registry
        )

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_access_decision(self, outcome: str, reason: str):
        """Record an allow/deny decision for an entry."""
        self._metrics["access_decisions_total"].labels(outcome=outcome, reason=reason).inc()

    def record_lookup_failure(self, source: str):
        """Record a failed or unavailable external lookup."""
        self._metrics["lookup_failures_total"].labels(source=source).inc()

    def record_evaluation(self, duration: float):
        """Record how long a rule list evaluation took."""
        self._metrics["access_evaluation_duration_seconds"].observe(duration)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
