"""
Prometheus metrics for order engine monitoring.

Tracks:
- Orders created by payment method
- Payment verification outcomes
- Order state transitions
- Gateway API calls, errors and circuit breaker state
- Notification outcomes
- Expired orders purged by the reaper
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
    ["payment_method"],
)

order_total_amount = Histogram(
    "order_total_amount",
    "Order totals in major currency units",
    buckets=(1, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 50000),
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Total order state transitions applied",
    ["event"],  # payment_verified, force_confirmed, mark_delivered, ...
)

payment_verifications_total = Counter(
    "payment_verifications_total",
    "Total payment verification attempts",
    ["outcome"],  # success, invalid_signature, conflict, expired, rejected
)

payment_initiations_total = Counter(
    "payment_initiations_total",
    "Total payment initiation attempts",
    ["outcome"],
)

# Gateway API metrics
gateway_api_requests_total = Counter(
    "gateway_api_requests_total",
    "Total payment gateway API requests",
    ["operation", "status"],  # operation: create_order, fetch_payment
)

gateway_api_errors_total = Counter(
    "gateway_api_errors_total",
    "Total payment gateway API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

gateway_api_duration_seconds = Histogram(
    "gateway_api_duration_seconds",
    "Payment gateway API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

gateway_circuit_breaker_state = Gauge(
    "gateway_circuit_breaker_state",
    "Gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Total notification dispatch attempts",
    ["kind", "outcome"],  # sent, failed, skipped
)

# Reaper metrics
expired_orders_purged_total = Counter(
    "expired_orders_purged_total",
    "Total expired pending gateway orders purged",
)

reaper_last_run_timestamp = Gauge(
    "reaper_last_run_timestamp",
    "Timestamp of last expiry reaper pass",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(payment_method: str, total: float) -> None:
        """Record a newly created order."""
        orders_created_total.labels(payment_method=payment_method).inc()
        order_total_amount.observe(total)

    @staticmethod
    def record_transition(event: str) -> None:
        order_transitions_total.labels(event=event).inc()

    @staticmethod
    def record_verification(outcome: str) -> None:
        payment_verifications_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_initiation(outcome: str) -> None:
        payment_initiations_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_gateway_api_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a gateway API call."""
        gateway_api_requests_total.labels(operation=operation, status=status).inc()
        gateway_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_api_error(error_type: str) -> None:
        gateway_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_notification(kind: str, outcome: str) -> None:
        notifications_total.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def record_reaper_pass(purged: int) -> None:
        """Record one expiry reaper pass."""
        if purged:
            expired_orders_purged_total.inc(purged)
        reaper_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
