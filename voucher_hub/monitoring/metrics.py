"""
Prometheus metrics for the voucher hub.

Tracks:
- Orders by provider and resulting status
- Provider call counts, durations and errors
- Provider circuit breaker state
- Reconciliation attempts by outcome and in-flight leases
- Notification deliveries
- Selling-price repairs on the read path
"""
from prometheus_client import Counter, Gauge, Histogram

# Order metrics
orders_total = Counter(
    "orders_total",
    "Total orders created",
    ["provider", "status"],
)

order_selling_price = Histogram(
    "order_selling_price",
    "Selling price of created orders",
    buckets=(5000, 10000, 20000, 50000, 100000, 250000, 500000, 1000000),
)

# Provider API metrics
provider_requests_total = Counter(
    "provider_requests_total",
    "Total provider API requests",
    ["provider", "outcome"],  # sukses, pending, gagal, error
)

provider_errors_total = Counter(
    "provider_errors_total",
    "Total provider API errors",
    ["provider", "error_type"],  # transport, http_status, decode, circuit_open
)

provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "Provider API call duration in seconds",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 30.0),
)

provider_circuit_breaker_state = Gauge(
    "provider_circuit_breaker_state",
    "Provider circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["provider"],
)

# Reconciliation metrics
reconciliation_attempts_total = Counter(
    "reconciliation_attempts_total",
    "Total reconciliation attempts",
    ["outcome"],  # settled, still_pending, already_settled, lost_race, provider_error, ...
)

reconciliation_inflight = Gauge(
    "reconciliation_inflight",
    "Reconciliation attempts currently holding a lease",
)

pending_transactions = Gauge(
    "pending_transactions",
    "Pending transactions observed on the last scheduler tick",
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Notification sends per destination",
    ["status"],  # sent, failed, skipped
)

# Data quality metrics
selling_price_repairs_total = Counter(
    "selling_price_repairs_total",
    "Transactions whose stored selling price was recomputed on read",
)

price_override_failures_total = Counter(
    "price_override_failures_total",
    "Price override lookups that fell back to the default markup",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order(provider: str, status: str, selling_price: int) -> None:
        """Record a created order."""
        orders_total.labels(provider=provider, status=status).inc()
        order_selling_price.observe(selling_price)

    @staticmethod
    def record_provider_call(provider: str, outcome: str, duration_seconds: float) -> None:
        """Record a provider API call."""
        provider_requests_total.labels(provider=provider, outcome=outcome).inc()
        provider_request_duration_seconds.labels(provider=provider).observe(duration_seconds)

    @staticmethod
    def record_provider_error(provider: str, error_type: str) -> None:
        """Record a provider API error."""
        provider_errors_total.labels(provider=provider, error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(provider: str, state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        provider_circuit_breaker_state.labels(provider=provider).set(state_map.get(state, 0))

    @staticmethod
    def record_reconciliation(outcome: str) -> None:
        """Record a reconciliation attempt."""
        reconciliation_attempts_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_reconciliation_inflight(count: int) -> None:
        reconciliation_inflight.set(count)

    @staticmethod
    def set_pending_transactions(count: int) -> None:
        pending_transactions.set(count)

    @staticmethod
    def record_notification(status: str) -> None:
        notifications_total.labels(status=status).inc()

    @staticmethod
    def record_selling_price_repair() -> None:
        selling_price_repairs_total.inc()

    @staticmethod
    def record_price_override_failure() -> None:
        price_override_failures_total.inc()


# Export singleton instance
metrics = MetricsCollector()
