"""Prometheus metrics for monitoring early payment commits, savings and gateway performance"""

from prometheus_client import Counter, Histogram

# Commit metrics
commit_counter = Counter(
    "earlypay_commit_total",
    "Early payment commits by terminal state",
    ["state"],  # completed | rejected | capture_failed | pending_approval | settlement_failed
)

replay_counter = Counter(
    "earlypay_commit_replays_total",
    "Commits answered from an already completed idempotency key",
)

discount_issued_histogram = Histogram(
    "earlypay_discount_issued_cents",
    "Discount granted per completed early payment",
    buckets=[0, 100, 250, 500, 1_000, 2_500, 5_000, 10_000],
)

options_counter = Counter(
    "earlypay_options_generated_total",
    "Early payment options offered",
    ["payment_type"],
)

# Configuration health
config_warning_counter = Counter(
    "earlypay_config_warnings_total",
    "Merchant configuration problems tolerated at runtime",
    ["kind"],  # overlapping_tiers
)

# Payment gateway metrics
capture_latency_histogram = Histogram(
    "capture_latency_seconds",
    "Payment gateway capture response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
)

capture_failure_counter = Counter(
    "capture_failures_total",
    "Failed payment captures",
    ["kind"],  # declined | timeout
)

# Ledger / audit metrics
settlement_failure_counter = Counter(
    "settlement_write_failures_total",
    "Failed installment settlement writes (including retried ones)",
)

audit_failure_counter = Counter(
    "audit_failures_total",
    "Failed audit sink reads or appends",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Ledger webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_commit(state: str, discount_cents: int) -> None:
    """Record commit outcome and, for completed commits, the discount granted"""
    commit_counter.labels(state=state).inc()
    if state == "completed":
        discount_issued_histogram.observe(discount_cents)
