"""
Shared metrics configuration for the RequestKit rules engine.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry


class MetricsCollector:
    """Prometheus metrics for the engine and its HTTP surface.

    Metrics are registered on the supplied ``CollectorRegistry``; with none
    they stay unregistered, so several collectors can live in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
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
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        # Engine metrics
        self._metrics["rule_conversions_total"] = Counter(
            "rule_conversions_total",
            "Total rule conversions",
            ["status"],
            registry=self.registry
        )
        self._metrics["rule_conversion_duration_seconds"] = Histogram(
            "rule_conversion_duration_seconds",
            "Per-rule conversion duration in seconds",
            buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
            registry=self.registry
        )
        self._metrics["platform_rules_active"] = Gauge(
            "platform_rules_active",
            "Number of platform rules handed to the host",
            registry=self.registry
        )
        self._metrics["platform_rules_truncated_total"] = Counter(
            "platform_rules_truncated_total",
            "Rules dropped because the platform limit was exceeded",
            registry=self.registry
        )
        self._metrics["template_resolutions_total"] = Counter(
            "template_resolutions_total",
            "Total template resolutions",
            ["status"],
            registry=self.registry
        )
        self._metrics["rule_matches_total"] = Counter(
            "rule_matches_total",
            "Total rule match evaluations",
            ["matched"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
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
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    def record_rule_conversion(self, success: bool, duration: float):
        """Record the outcome of converting one rule; ``duration`` is in seconds."""
        self._metrics["rule_conversions_total"].labels(status="success" if success else "failure").inc()
        self._metrics["rule_conversion_duration_seconds"].observe(duration)

    def record_truncation(self, dropped: int):
        self._metrics["platform_rules_truncated_total"].inc(dropped)

    def set_active_platform_rules(self, count: int):
        with self._lock:
            self._metrics["platform_rules_active"].set(count)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a labelled counter; unknown names are ignored."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
