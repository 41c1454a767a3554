from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "lifetrack_requests_total",
    "Total HTTP requests processed by the journal API",
    ("method", "path", "status"),
)

REQUEST_LATENCY = Histogram(
    "lifetrack_request_latency_seconds",
    "HTTP request latency in seconds",
    ("method", "path"),
)

REQUEST_ERRORS = Counter(
    "lifetrack_request_errors_total",
    "HTTP requests resulting in server errors",
    ("method", "path", "status"),
)

JOURNAL_OPERATIONS = Counter(
    "lifetrack_journal_operations_total",
    "Journal service operations by outcome",
    ("operation", "result"),
)

SENTIMENT_REQUESTS = Counter(
    "lifetrack_sentiment_requests_total",
    "Sentiment classifier calls",
    ("backend", "result"),
)

SENTIMENT_LATENCY = Histogram(
    "lifetrack_sentiment_latency_seconds",
    "Sentiment classifier latency in seconds",
    ("backend",),
)

TELEMETRY_EVENTS = Counter(
    "lifetrack_events_total",
    "Named telemetry events",
    ("name",),
)

TELEMETRY_EXCEPTIONS = Counter(
    "lifetrack_exceptions_total",
    "Exceptions recorded by the telemetry client",
    ("type",),
)

TELEMETRY_METRICS = Gauge(
    "lifetrack_metric_values",
    "Last value of ad hoc telemetry metrics",
    ("name",),
)

__all__ = [
    "JOURNAL_OPERATIONS",
    "REQUEST_COUNT",
    "REQUEST_ERRORS",
    "REQUEST_LATENCY",
    "SENTIMENT_LATENCY",
    "SENTIMENT_REQUESTS",
    "TELEMETRY_EVENTS",
    "TELEMETRY_EXCEPTIONS",
    "TELEMETRY_METRICS",
]
