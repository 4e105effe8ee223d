"""Prometheus metrics for monitoring receipts, auto-apply outcomes and ledger repairs"""

from decimal import Decimal
from prometheus_client import Counter, Histogram

# Payment metrics
advance_payment_counter = Counter(
    "crm_advance_payment_total",
    "Advance payments recorded or corrected",
    ["action"],  # created | updated
)

auto_apply_counter = Counter(
    "crm_auto_apply_total",
    "Auto-apply runs by outcome",
    ["outcome"],  # applied | nothing_to_apply | already_applied | failed
)

allocated_amount_counter = Counter(
    "crm_allocated_amount_total",
    "Amount applied from advance payments to billings",
)

# Ledger integrity
ledger_repair_counter = Counter(
    "crm_ledger_repairs_total",
    "Over-applied receipts repaired during correction",
)

ledger_inconsistency_counter = Counter(
    "crm_ledger_inconsistencies_total",
    "Corrections rejected because the ledger could not be reconciled",
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


def record_auto_apply(outcome: str, total_applied: Decimal) -> None:
    """Record auto-apply outcome and the amount it moved"""
    auto_apply_counter.labels(outcome=outcome).inc()
    if total_applied > 0:
        allocated_amount_counter.inc(float(total_applied))
