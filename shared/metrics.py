"""
Shared metrics configuration for the rate limiter service.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for the limiter and its HTTP surface.

    Every collector owns its registry, so several limiters (or test cases) can
    live in one process without clashing on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

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

        self._setup_limiter_metrics()

    def _setup_limiter_metrics(self):
        """Set up token bucket and drain metrics."""
        self._metrics["tokens_acquired_total"] = Counter(
            "tokens_acquired_total",
            "Total tokens acquired from the bucket pair",
            registry=self.registry
        )

        self._metrics["token_wait_seconds"] = Histogram(
            "token_wait_seconds",
            "Time spent waiting for a token",
            buckets=(0.0, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0),
            registry=self.registry
        )

        self._metrics["refills_total"] = Counter(
            "refills_total",
            "Total window refills",
            ["window"],
            registry=self.registry
        )

        self._metrics["tokens_remaining"] = Gauge(
            "tokens_remaining",
            "Tokens remaining in the current window",
            ["window"],
            registry=self.registry
        )

        self._metrics["starvation_warnings_total"] = Counter(
            "starvation_warnings_total",
            "Token waits that exceeded the starvation threshold",
            registry=self.registry
        )

        self._metrics["tasks_total"] = Counter(
            "tasks_total",
            "Total drained tasks by outcome",
            ["status"],
            registry=self.registry
        )

        self._metrics["drain_runs_total"] = Counter(
            "drain_runs_total",
            "Total drain runs by final state",
            ["state"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

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

    def record_token_acquired(self, waited: float):
        self._metrics["tokens_acquired_total"].inc()
        self._metrics["token_wait_seconds"].observe(waited)

    def record_refill(self, window: str, remaining: float):
        self._metrics["refills_total"].labels(window=window).inc()
        self.set_gauge("tokens_remaining", remaining, window=window)

    def record_task(self, status: str):
        self._metrics["tasks_total"].labels(status=status).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def sample(self, metric_name: str, **labels) -> Optional[float]:
        """Read the current value of a metric sample from this collector's registry."""
        return self.registry.get_sample_value(metric_name, labels or None)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

