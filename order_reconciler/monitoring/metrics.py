"""
Prometheus metrics for order reconciliation monitoring.

Tracks:
- Orders created per provider
- Order status transitions and their outcomes
- Provider API calls, errors and latency
- Webhook events and signature failures
"""
from prometheus_client import Counter, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
    ["provider"],
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions attempted",
    ["source", "outcome"],  # source: webhook, capture; outcome: matched, not_matched, store_error
)

# Provider API metrics
provider_requests_total = Counter(
    "provider_requests_total",
    "Total payment provider API requests",
    ["provider", "operation", "status"],
)

provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "Payment provider API call duration in seconds",
    ["provider", "operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Total verified webhook events",
    ["event_type", "outcome"],
)

webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Total webhook requests rejected for signature failures",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(provider: str) -> None:
        """Record a persisted order."""
        orders_created_total.labels(provider=provider).inc()

    @staticmethod
    def record_transition(source: str, outcome: str) -> None:
        """Record an attempted status transition."""
        order_transitions_total.labels(source=source, outcome=outcome).inc()

    @staticmethod
    def record_provider_call(
        provider: str, operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record a provider API call."""
        provider_requests_total.labels(
            provider=provider, operation=operation, status=status
        ).inc()
        provider_request_duration_seconds.labels(
            provider=provider, operation=operation
        ).observe(duration_seconds)

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        """Record a verified webhook event."""
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_signature_failure() -> None:
        """Record a rejected webhook."""
        webhook_signature_failures_total.inc()


# Export singleton instance
metrics = MetricsCollector()
