"""
Prometheus metrics for payment verification and webhook monitoring.

Tracks:
- Client verification outcomes
- Webhook events by type and outcome
- Settlements by trigger source
- Paystack API calls, errors and circuit breaker state
- Registrations created
- Pending payment sweep outcomes
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Verification metrics
verification_requests_total = Counter(
    "verification_requests_total",
    "Total client-initiated payment verifications",
    ["outcome"],  # settled, already_paid, not_successful, not_found, mismatch, error
)

verification_duration_seconds = Histogram(
    "verification_duration_seconds",
    "Payment verification duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Settlement metrics
payments_settled_total = Counter(
    "payments_settled_total",
    "Total registrations moved from PENDING to PAID",
    ["source"],  # verify, webhook
)

payment_amount_minor_units = Histogram(
    "payment_amount_minor_units",
    "Settled payment amounts in minor currency units",
    buckets=(10000, 50000, 100000, 250000, 500000, 1000000, 2500000, 5000000),
)

# Paystack API metrics
paystack_api_requests_total = Counter(
    "paystack_api_requests_total",
    "Total Paystack API requests",
    ["operation", "status"],  # operation: initialize, verify
)

paystack_api_errors_total = Counter(
    "paystack_api_errors_total",
    "Total Paystack API errors",
    ["error_type"],  # unavailable, rejected
)

paystack_api_duration_seconds = Histogram(
    "paystack_api_duration_seconds",
    "Paystack API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

paystack_circuit_breaker_state = Gauge(
    "paystack_circuit_breaker_state",
    "Paystack circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # processed, ignored, duplicate, mismatch, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Total webhook requests rejected for a bad signature",
)

# Registration metrics
registrations_created_total = Counter(
    "registrations_created_total",
    "Total registrations created",
)

# Sweep metrics
sweep_registrations_total = Counter(
    "sweep_registrations_total",
    "Pending registrations examined by the sweep",
    ["outcome"],
)

sweep_last_run_timestamp = Gauge(
    "sweep_last_run_timestamp",
    "Timestamp of the last pending payment sweep",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_verification(outcome: str, duration_seconds: float) -> None:
        """Record a client-initiated verification."""
        verification_requests_total.labels(outcome=outcome).inc()
        verification_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_settlement(source: str, amount: int) -> None:
        """Record a PENDING -> PAID transition."""
        payments_settled_total.labels(source=source).inc()
        payment_amount_minor_units.observe(amount)

    @staticmethod
    def record_paystack_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Paystack API call."""
        paystack_api_requests_total.labels(operation=operation, status=status).inc()
        paystack_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_paystack_api_error(error_type: str) -> None:
        """Record Paystack API error."""
        paystack_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        paystack_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(event_type=event_type).inc()
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_webhook_signature_failure() -> None:
        webhook_signature_failures_total.inc()

    @staticmethod
    def record_registration_created() -> None:
        registrations_created_total.inc()

    @staticmethod
    def record_sweep_outcome(outcome: str) -> None:
        sweep_registrations_total.labels(outcome=outcome).inc()

    @staticmethod
    def mark_sweep_run() -> None:
        sweep_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
