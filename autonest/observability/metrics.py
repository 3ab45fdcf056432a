"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from autonest.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"
    TOOL = "tool"
    OUTCOME = "outcome"


class AutoNestMetrics:
    """
    Centralized metrics for the AutoNest API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Payments (order creation, captures by outcome)
    - Ledger mutations (debits, credits, rejected debits)
    - Tool runs (per tool, per outcome, webhook latency)
    - Run log writes
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "autonest_service",
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
            "autonest_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "autonest_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "autonest_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payment_orders_total = Counter(
            "autonest_payment_orders_total",
            "Payment orders created",
            [MetricLabels.OUTCOME],
        )

        self.payment_captures_total = Counter(
            "autonest_payment_captures_total",
            "Payment captures by outcome",
            [MetricLabels.OUTCOME],
        )

        self.reconciliation_failures_total = Counter(
            "autonest_reconciliation_failures_total",
            "Captured payments whose credits could not be applied",
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_mutations_total = Counter(
            "autonest_ledger_mutations_total",
            "Credit ledger mutations",
            [MetricLabels.TRANSACTION_TYPE, "success"],
        )

        self.ledger_mutation_amount = Histogram(
            "autonest_ledger_mutation_amount",
            "Credit amounts per ledger mutation",
            [MetricLabels.TRANSACTION_TYPE],
            buckets=(1, 2, 5, 10, 25, 50, 100, 500, 1000, 5000, 10000),
        )

        self.accounts_created_total = Counter(
            "autonest_accounts_created_total",
            "Total accounts provisioned",
        )

        # ====================================================================
        # Tool Metrics
        # ====================================================================
        self.tool_runs_total = Counter(
            "autonest_tool_runs_total",
            "Workflow tool invocations",
            [MetricLabels.TOOL, MetricLabels.OUTCOME],
        )

        self.tool_duration_seconds = Histogram(
            "autonest_tool_duration_seconds",
            "Workflow tool webhook duration in seconds",
            [MetricLabels.TOOL],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
        )

        self.run_log_write_failures_total = Counter(
            "autonest_run_log_write_failures_total",
            "Run log entries that could not be written",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "autonest_errors_total",
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

    def record_ledger_mutation(self, transaction_type: str, success: bool, amount: int) -> None:
        """Record a debit or credit attempt."""
        self.ledger_mutations_total.labels(
            transaction_type=transaction_type, success=str(success)
        ).inc()
        if success:
            self.ledger_mutation_amount.labels(transaction_type=transaction_type).observe(amount)

    def record_tool_run(self, tool: str, outcome: str, duration: float) -> None:
        """Record a tool invocation."""
        self.tool_runs_total.labels(tool=tool, outcome=outcome).inc()
        self.tool_duration_seconds.labels(tool=tool).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = AutoNestMetrics()
