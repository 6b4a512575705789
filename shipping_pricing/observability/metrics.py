# shipping_pricing/observability/metrics.py
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

calculation_counter = Counter(
    "pricing_calculations_total",
    "Aantal single-carrier price calculations",
    ["carrier", "result"],  # result: success|error code
)

calculation_latency_hist = Histogram(
    "pricing_calculation_latency_seconds",
    "Latency of one carrier price calculation",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
)

comparison_counter = Counter(
    "pricing_comparisons_total",
    "Aantal multi-carrier comparisons",
    ["result"],  # success|no_carriers|all_failed
)

bulk_items_counter = Counter(
    "pricing_bulk_items_total",
    "Bulk calculation items by outcome",
    ["result"],  # success|failed|skipped
)


def render_latest() -> tuple[bytes, str]:
    # Prometheus expects text/plain; version=0.0.4
    return generate_latest(), CONTENT_TYPE_LATEST
