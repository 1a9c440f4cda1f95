"""Prometheus metrics for the twins service.

All metric objects are defined at import time and shared by the metrics
middleware and the telemetry ingestor.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

twins_requests_total = Counter(
    "twins_requests_total",
    "Number of twins service calls",
    ["method", "status"],
)
twins_request_duration_seconds = Histogram(
    "twins_request_duration_seconds",
    "Twins service call duration",
    ["method"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)
telemetry_messages_total = Counter(
    "twins_telemetry_messages_total",
    "Telemetry envelopes handled by the ingestor",
    ["status"],
)

__all__ = [
    "twins_requests_total",
    "twins_request_duration_seconds",
    "telemetry_messages_total",
]
