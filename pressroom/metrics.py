"""Prometheus collectors shared by the HTTP layer and stream sessions."""

from __future__ import annotations

from prometheus_client import REGISTRY, Counter, Gauge, Histogram


def _get_or_create_metric(metric_cls, name: str, documentation: str, labelnames):
    existing = REGISTRY._names_to_collectors.get(name)
    if existing is not None:
        return existing
    return metric_cls(name, documentation, labelnames=labelnames)


REQUEST_COUNTER = _get_or_create_metric(
    Counter,
    "pressroom_requests_total",
    "Total HTTP requests processed by the stream server",
    ("method", "endpoint", "status"),
)
REQUEST_LATENCY = _get_or_create_metric(
    Histogram,
    "pressroom_request_latency_seconds",
    "Latency until response headers are sent",
    ("method", "endpoint"),
)
STREAM_SESSIONS_OPEN = _get_or_create_metric(
    Gauge,
    "pressroom_stream_sessions_open",
    "Event-stream sessions currently active",
    ("stream",),
)
STREAM_FRAMES_SENT = _get_or_create_metric(
    Counter,
    "pressroom_stream_frames_total",
    "Frames pushed to event-stream clients",
    ("stream", "kind"),
)
STREAM_TICK_FAILURES = _get_or_create_metric(
    Counter,
    "pressroom_stream_tick_failures_total",
    "Poll ticks whose snapshot computation raised",
    ("stream",),
)


__all__ = [
    "REQUEST_COUNTER",
    "REQUEST_LATENCY",
    "STREAM_SESSIONS_OPEN",
    "STREAM_FRAMES_SENT",
    "STREAM_TICK_FAILURES",
]
