"""
Metrics Collection with Prometheus.

Exposes ledger, webhook and proxy metrics for monitoring.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

from creditgate.config import settings


class MetricLabels:
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    SOURCE = "source"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class CreditMetrics:
    """
    Centralized metrics for the credit gate.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Registrations and credit consumption by pool
    - Credits granted by payments and manual grants
    - Webhook outcomes, notifications, completions
    - Store operations and retries
    """

    def __init__(self) -> None:
        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "creditgate_service",
            "Service information",
        )
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
            "creditgate_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "creditgate_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "creditgate_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.registrations_total = Counter(
            "creditgate_registrations_total",
            "Device registrations",
            ["new_device"],
        )

        self.credits_consumed_total = Counter(
            "creditgate_credits_consumed_total",
            "Credit consumption attempts",
            [MetricLabels.SOURCE, MetricLabels.OUTCOME],
        )

        self.credits_refunded_total = Counter(
            "creditgate_credits_refunded_total",
            "Credits returned after a failed completion",
            [MetricLabels.SOURCE],
        )

        self.credits_granted_total = Counter(
            "creditgate_credits_granted_total",
            "Paid credits granted",
            ["package"],
        )

        self.store_retries_total = Counter(
            "creditgate_store_retries_total",
            "Store operations retried after reconnecting",
            [MetricLabels.OPERATION, "recovered"],
        )

        # ====================================================================
        # Integration Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "creditgate_webhook_events_total",
            "Payment webhook events by outcome",
            [MetricLabels.OUTCOME],
        )

        self.notifications_total = Counter(
            "creditgate_notifications_total",
            "Activation emails by transport and outcome",
            ["transport", MetricLabels.OUTCOME],
        )

        self.completions_total = Counter(
            "creditgate_completions_total",
            "Completion proxy requests by outcome",
            [MetricLabels.OUTCOME],
        )

        self.completion_duration_seconds = Histogram(
            "creditgate_completion_duration_seconds",
            "Upstream completion latency in seconds",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
        )

        # ====================================================================
        # Database Metrics
        # ====================================================================
        self.db_queries_total = Counter(
            "creditgate_db_queries_total",
            "Total database operations",
            [MetricLabels.OPERATION, "success"],
        )

        self.db_query_duration_seconds = Histogram(
            "creditgate_db_query_duration_seconds",
            "Database operation duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "creditgate_errors_total",
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

    def record_registration(self, is_new_device: bool) -> None:
        self.registrations_total.labels(new_device=str(is_new_device)).inc()

    def record_consumption(self, source: str | None, outcome: str) -> None:
        """Record a consume attempt; source is None when nothing was taken."""
        self.credits_consumed_total.labels(source=source or "none", outcome=outcome).inc()

    def record_refund(self, source: str) -> None:
        self.credits_refunded_total.labels(source=source).inc()

    def record_credit_grant(self, package: str, credits: int) -> None:
        self.credits_granted_total.labels(package=package).inc(credits)

    def record_store_retry(self, operation: str, recovered: bool) -> None:
        self.store_retries_total.labels(operation=operation, recovered=str(recovered)).inc()

    def record_webhook(self, outcome: str) -> None:
        self.webhook_events_total.labels(outcome=outcome).inc()

    def record_notification(self, transport: str, success: bool) -> None:
        self.notifications_total.labels(
            transport=transport, outcome="sent" if success else "failed"
        ).inc()

    def record_completion(self, outcome: str, duration: float | None = None) -> None:
        self.completions_total.labels(outcome=outcome).inc()
        if duration is not None:
            self.completion_duration_seconds.observe(duration)

    def record_db_query(self, operation: str, success: bool, duration: float) -> None:
        """Record database query metrics."""
        self.db_queries_total.labels(operation=operation, success=str(success)).inc()
        self.db_query_duration_seconds.labels(operation=operation).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = CreditMetrics()
