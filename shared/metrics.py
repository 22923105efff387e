"""
Shared metrics configuration for the Menu Service.
"""

from typing import Any, Dict, Optional
import time
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Prometheus metrics for one service, kept in a private registry."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up service metrics."""
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP
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
            ["error_type"],
            registry=self.registry
        )

        # Authentication
        self._metrics["token_verifications_total"] = Counter(
            "token_verifications_total",
            "Total token verifications",
            ["result"],
            registry=self.registry
        )
        self._metrics["jwks_fetch_total"] = Counter(
            "jwks_fetch_total",
            "Total JWKS document fetches",
            ["status"],
            registry=self.registry
        )
        self._metrics["jwks_fetch_duration_seconds"] = Histogram(
            "jwks_fetch_duration_seconds",
            "JWKS fetch duration in seconds",
            registry=self.registry
        )
        self._metrics["users_created_total"] = Counter(
            "users_created_total",
            "Users created on first authentication",
            registry=self.registry
        )

        # Relationship engine
        self._metrics["relation_operations_total"] = Counter(
            "relation_operations_total",
            "Menu and favorite write operations",
            ["operation", "status"],
            registry=self.registry
        )
        self._metrics["relation_operation_duration_seconds"] = Histogram(
            "relation_operation_duration_seconds",
            "Menu and favorite write duration in seconds",
            ["operation"],
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
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str):
        self._metrics["errors_total"].labels(error_type=error_type).inc()

    def record_token_verification(self, result: str):
        self._metrics["token_verifications_total"].labels(result=result).inc()

    def record_jwks_fetch(self, status: str, duration: float):
        self._metrics["jwks_fetch_total"].labels(status=status).inc()
        self._metrics["jwks_fetch_duration_seconds"].observe(duration)

    def record_user_created(self):
        self._metrics["users_created_total"].inc()

    @contextmanager
    def time_operation(self, operation: str):
        """Time a relationship operation and count its outcome."""
        start_time = time.time()
        status = "error"
        try:
            yield
            status = "ok"
        finally:
            self._metrics["relation_operations_total"].labels(operation=operation, status=status).inc()
            self._metrics["relation_operation_duration_seconds"].labels(
                operation=operation
            ).observe(time.time() - start_time)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
