"""
Prometheus Metrics

Provides counters, gauges, and histograms for:
- Transmission outcomes by type and protocol
- Transport latency
- Scheduler armed set and bulk operations
"""

from prometheus_client import Counter, Gauge, Histogram

# ── Transmission metrics ────────────────────────────────────────

TRANSMISSIONS_TOTAL = Counter(
    "devsim_transmissions_total",
    "Transmission attempts recorded",
    ["protocol", "transmission_type", "status"],  # status: SUCCESS | FAILED
)

TRANSPORT_LATENCY = Histogram(
    "devsim_transport_latency_seconds",
    "Delivery latency per transmission",
    ["protocol"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf")],
)

# ── Scheduler metrics ───────────────────────────────────────────

SCHEDULED_DEVICES = Gauge(
    "devsim_scheduled_devices",
    "Devices currently armed for automatic transmission",
)

SCHEDULER_TICK_ERRORS = Counter(
    "devsim_scheduler_tick_errors_total",
    "Automatic ticks that raised instead of recording",
)

# ── Bulk operation metrics ──────────────────────────────────────

BULK_OPERATIONS_TOTAL = Counter(
    "devsim_bulk_operations_total",
    "Project bulk operations by operation and per-device outcome",
    ["operation", "status"],
)
