"""
Prometheus metrics for the delivery engine.

All series are labelled by engine id so several engines in one process
stay distinguishable. Expose them with ``prometheus_client.start_http_server``.
"""

from prometheus_client import Counter, Gauge, Histogram


EVENTS_RECORDED_TOTAL = Counter(
    "telemetry_events_recorded_total",
    "Events accepted by record()",
    ["engine"],
)

EVENTS_DELIVERED_TOTAL = Counter(
    "telemetry_events_delivered_total",
    "Events acknowledged by the ingestion endpoint",
    ["engine"],
)

EVENTS_DROPPED_TOTAL = Counter(
    "telemetry_events_dropped_total",
    "Events permanently dropped",
    ["engine", "reason"],
)

FLUSH_ATTEMPTS_TOTAL = Counter(
    "telemetry_flush_attempts_total",
    "Batch send attempts",
    ["engine", "outcome"],
)

FLUSH_SKIPPED_TOTAL = Counter(
    "telemetry_flush_skipped_total",
    "Flush triggers that did nothing",
    ["engine", "reason"],
)

QUEUE_DEPTH = Gauge(
    "telemetry_queue_depth",
    "Events waiting in the queue",
    ["engine"],
)

SEND_LATENCY_MS = Histogram(
    "telemetry_send_latency_ms",
    "Batch POST latency in milliseconds",
    ["engine"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)


class MetricsRegistry:
    """Centralized access to the engine's metrics."""

    events_recorded_total = EVENTS_RECORDED_TOTAL
    events_delivered_total = EVENTS_DELIVERED_TOTAL
    events_dropped_total = EVENTS_DROPPED_TOTAL
    flush_attempts_total = FLUSH_ATTEMPTS_TOTAL
    flush_skipped_total = FLUSH_SKIPPED_TOTAL
    queue_depth = QUEUE_DEPTH
    send_latency_ms = SEND_LATENCY_MS


# Singleton instance
metrics_registry = MetricsRegistry()
