"""
Metrics Collection with Prometheus.

Exposes webhook, ledger and HTTP metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Histogram, Info

from showroom_billing.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    PLAN_CODE = "plan_code"
    REASON = "reason"
    ERROR_TYPE = "error_type"


class BillingMetrics:
    """
    Centralized metrics for the Showroom Billing API.

    Covers:
    - HTTP requests (rate, duration)
    - Webhook deliveries by outcome and processing time
    - Credits granted, consumed and expired
    - Account creation
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "showroom_billing_service",
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
            "showroom_billing_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "showroom_billing_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhook_deliveries_total = Counter(
            "showroom_billing_webhook_deliveries_total",
            "Gumroad webhook deliveries by outcome",
            [MetricLabels.OUTCOME],
        )

        self.webhook_duration_seconds = Histogram(
            "showroom_billing_webhook_duration_seconds",
            "Webhook processing duration in seconds",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.credits_granted_total = Counter(
            "showroom_billing_credits_granted_total",
            "Credits granted by purchases and trials",
            [MetricLabels.PLAN_CODE],
        )

        self.credits_consumed_total = Counter(
            "showroom_billing_credits_consumed_total",
            "Credits consumed by usage",
        )

        self.consumptions_total = Counter(
            "showroom_billing_consumptions_total",
            "Consumption attempts",
            ["success", MetricLabels.REASON],
        )

        self.credits_expired_total = Counter(
            "showroom_billing_credits_expired_total",
            "Credits zeroed by the expiry sweep",
        )

        self.admin_adjustments_total = Counter(
            "showroom_billing_admin_adjustments_total",
            "Admin balance overrides",
        )

        # ====================================================================
        # Account Metrics
        # ====================================================================
        self.accounts_created_total = Counter(
            "showroom_billing_accounts_created_total",
            "Total accounts created",
            [MetricLabels.REASON],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "showroom_billing_errors_total",
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

    def record_webhook(self, outcome: str, duration: float) -> None:
        """Record one webhook delivery, whatever its outcome."""
        self.webhook_deliveries_total.labels(outcome=outcome).inc()
        self.webhook_duration_seconds.observe(duration)

    def record_credit_grant(self, plan_code: str, credits: int) -> None:
        """Record credits added by a purchase or trial."""
        self.credits_granted_total.labels(plan_code=plan_code).inc(credits)

    def record_consumption(self, success: bool, amount: int, reason: str | None = None) -> None:
        """Record a consumption attempt."""
        self.consumptions_total.labels(success=str(success), reason=reason or "none").inc()
        if success:
            self.credits_consumed_total.inc(amount)

    def record_account_created(self, reason: str) -> None:
        """Record account creation."""
        self.accounts_created_total.labels(reason=reason).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = BillingMetrics()

