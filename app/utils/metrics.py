"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
redemptions_total = Counter(
    "redemptions_total",
    "Total number of successful code redemptions",
    ["role"],
)

redemptions_rejected_total = Counter(
    "redemptions_rejected_total",
    "Total number of rejected redemptions",
    ["reason"],
)

codes_generated_total = Counter(
    "codes_generated_total",
    "Total number of generated codes",
    ["role"],
)

code_generation_collisions_total = Counter(
    "code_generation_collisions_total",
    "Candidate codes rejected because they were already taken",
)

payouts_total = Counter(
    "payouts_total",
    "Payout state transitions",
    ["outcome"],  # requested, approved, cancelled, transfer_failed
)

transfer_requests_total = Counter(
    "transfer_requests_total",
    "Total funds-transfer API requests",
    ["method", "status"],
)

emails_total = Counter(
    "emails_total",
    "Outbound notification emails",
    ["status"],  # sent, failed, skipped
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
transfer_request_duration_seconds = Histogram(
    "transfer_request_duration_seconds",
    "Funds-transfer API request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
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
