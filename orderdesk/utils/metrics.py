"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
work_orders_total = Counter(
    "work_orders_total",
    "Work order lifecycle events",
    ["event"],  # submitted, claimed, completed, cancelled
)

insufficient_credit_total = Counter(
    "insufficient_credit_total",
    "Submissions rejected for insufficient credit",
)

ledger_entries_total = Counter(
    "ledger_entries_total",
    "Ledger entries written",
    ["direction"],  # debit, credit
)

ledger_conflicts_total = Counter(
    "ledger_conflicts_total",
    "Lost-update conflicts detected on ledger writes",
)

appeals_resolved_total = Counter(
    "appeals_resolved_total",
    "Resolved appeals",
    ["decision"],
)

balance_requests_resolved_total = Counter(
    "balance_requests_resolved_total",
    "Resolved balance top-up requests",
    ["decision"],
)

bulk_items_total = Counter(
    "bulk_items_total",
    "Items processed by bulk operations",
    ["op", "outcome"],
)

notifications_failed_total = Counter(
    "notifications_failed_total",
    "Notification batches that could not be dispatched",
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
claim_wait_seconds = Histogram(
    "claim_wait_seconds",
    "Time from submission to claim",
    buckets=[60, 300, 900, 1800, 3600, 7200, 21600, 86400],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
