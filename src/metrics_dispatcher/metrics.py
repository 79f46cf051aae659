"""
Prometheus metrics, registered on the global REGISTRY.
Dispatcher series carry a "dispatcher" label, sink series a "sink" label.
"""

from prometheus_client import Counter, Gauge, Histogram

POINTS_ENQUEUED_TOTAL = Counter(
    "dispatcher_points_enqueued_total",
    "Points accepted into the buffer",
    ["dispatcher"],
)

POINTS_DROPPED_TOTAL = Counter(
    "dispatcher_points_dropped_total",
    "Points dropped before reaching a batch",
    ["dispatcher", "reason"],  # overflow | rejected | closed
)

FLUSH_CYCLES_TOTAL = Counter(
    "dispatcher_flush_cycles_total",
    "Completed flush cycles that delivered a non-empty batch",
    ["dispatcher", "trigger", "outcome"],
)

POINTS_DELIVERED_TOTAL = Counter(
    "dispatcher_points_delivered_total",
    "Points written to the sink",
    ["dispatcher"],
)

POINTS_LOST_TOTAL = Counter(
    "dispatcher_points_lost_total",
    "Drained points that were never delivered",
    ["dispatcher", "reason"],  # exhausted | fatal | abandoned
)

DELIVERY_ATTEMPTS_TOTAL = Counter(
    "dispatcher_delivery_attempts_total",
    "Sink write attempts, retries included",
    ["dispatcher"],
)

FLUSH_LATENCY_MS = Histogram(
    "dispatcher_flush_latency_ms",
    "Batch delivery latency in milliseconds, retries included",
    ["dispatcher"],
    buckets=[1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

BUFFER_OCCUPANCY = Gauge(
    "dispatcher_buffer_occupancy",
    "Points currently buffered",
    ["dispatcher"],
)

# --- Sink metrics ---

SINK_WRITES_TOTAL = Counter(
    "sink_writes_total",
    "Batch writes performed by sinks",
    ["sink", "status"],  # success | failure
)

SINK_WRITE_LATENCY = Histogram(
    "sink_write_latency_seconds",
    "Sink write latency in seconds",
    ["sink"],
)


class MetricsRegistry:
    """Structured access to all dispatcher metrics."""

    points_enqueued_total = POINTS_ENQUEUED_TOTAL
    points_dropped_total = POINTS_DROPPED_TOTAL
    flush_cycles_total = FLUSH_CYCLES_TOTAL
    points_delivered_total = POINTS_DELIVERED_TOTAL
    points_lost_total = POINTS_LOST_TOTAL
    delivery_attempts_total = DELIVERY_ATTEMPTS_TOTAL
    flush_latency_ms = FLUSH_LATENCY_MS
    buffer_occupancy = BUFFER_OCCUPANCY
    sink_writes_total = SINK_WRITES_TOTAL
    sink_write_latency = SINK_WRITE_LATENCY


metrics_registry = MetricsRegistry()
