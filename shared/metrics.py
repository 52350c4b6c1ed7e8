"""
Shared metrics configuration for the Workforce Access Core.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several services (or test
    fixtures) can live in one process without duplicate registrations.
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

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_authz_metrics()

    def _setup_authz_metrics(self):
        """Set up tenant resolution, gate and MFA metrics."""
        self._metrics["tenant_resolutions_total"] = Counter(
            "tenant_resolutions_total",
            "Total tenant resolutions",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["gate_decisions_total"] = Counter(
            "gate_decisions_total",
            "Total request gate decisions",
            ["gate", "decision"],
            registry=self.registry
        )

        self._metrics["mfa_verifications_total"] = Counter(
            "mfa_verifications_total",
            "Total MFA code verifications",
            ["method", "result"],
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

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_tenant_resolution(self, outcome: str):
        """Record how a caller was resolved: cache_hit, scan or not_found."""
        self._metrics["tenant_resolutions_total"].labels(outcome=outcome).inc()

    def record_gate_decision(self, gate: str, decision: str):
        """Record a tenant or MFA gate decision."""
        self._metrics["gate_decisions_total"].labels(gate=gate, decision=decision).inc()

    def record_mfa_verification(self, method: str, result: str):
        """Record an MFA code check by method (setup, totp, backup_code, login)."""
        self._metrics["mfa_verifications_total"].labels(method=method, result=result).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
