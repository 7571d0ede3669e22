"""
Metrics Collection with Prometheus.

Exposes authentication and session metrics for monitoring.
"""

from enum import Enum

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, Info, generate_latest

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    TOKEN_TYPE = "token_type"
    ERROR_TYPE = "error_type"


class AuthMetrics:
    """
    Centralized metrics for the credential and session service.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Logins and 2FA verifications by outcome
    - Token issuance, revocation and cleanup
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info("auth_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "auth_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "auth_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "auth_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Authentication Metrics
        # ====================================================================
        self.logins_total = Counter(
            "auth_logins_total",
            "Login attempts by method and outcome",
            ["method", MetricLabels.OUTCOME],
        )

        self.two_factor_verifications_total = Counter(
            "auth_two_factor_verifications_total",
            "2FA verifications by kind (totp/backup_code) and outcome",
            ["kind", MetricLabels.OUTCOME],
        )

        self.registrations_total = Counter(
            "auth_registrations_total",
            "Total successful registrations",
        )

        # ====================================================================
        # Token Metrics
        # ====================================================================
        self.tokens_issued_total = Counter(
            "auth_tokens_issued_total",
            "Tokens issued by type",
            [MetricLabels.TOKEN_TYPE],
        )

        self.tokens_revoked_total = Counter(
            "auth_tokens_revoked_total",
            "Tokens revoked by type",
            [MetricLabels.TOKEN_TYPE],
        )

        self.token_cleanup_total = Counter(
            "auth_token_cleanup_total",
            "Rows touched by the expired-token sweep",
            ["action"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "auth_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_login(self, method: str, outcome: str) -> None:
        """method: password | client_credentials; outcome: success | two_factor_required | ..."""
        self.logins_total.labels(method=method, outcome=outcome).inc()

    def record_two_factor(self, kind: str, success: bool) -> None:
        self.two_factor_verifications_total.labels(
            kind=kind, outcome="success" if success else "failure"
        ).inc()

    def record_token_issued(self, token_type: str) -> None:
        self.tokens_issued_total.labels(token_type=token_type).inc()

    def record_tokens_revoked(self, token_type: str, count: int = 1) -> None:
        if count > 0:
            self.tokens_revoked_total.labels(token_type=token_type).inc(count)

    def record_cleanup(
        self, expired_marked: int, deleted: int, deny_list_purged: int = 0
    ) -> None:
        self.token_cleanup_total.labels(action="expired_marked").inc(expired_marked)
        self.token_cleanup_total.labels(action="deleted").inc(deleted)
        self.token_cleanup_total.labels(action="deny_list_purged").inc(deny_list_purged)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = AuthMetrics()


def render_metrics() -> bytes:
    """Prometheus exposition of the default registry."""
    return generate_latest(REGISTRY)
