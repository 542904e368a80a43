"""Prometheus metrics endpoint.

Exposes write-path and relay metrics for monitoring via Grafana.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    start_http_server,
)

from outbox_relay import __version__
from outbox_relay.core.enums import AdmitOutcome

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("outbox_system", "Outbox service information")

# ---------------------------------------------------------------------------
# Write path metrics
# ---------------------------------------------------------------------------

ADMISSIONS_TOTAL = Counter(
    "outbox_admissions_total",
    "Idempotency guard admission decisions",
    ["outcome"],
)

ORDERS_CREATED_TOTAL = Counter(
    "outbox_orders_created_total",
    "Orders durably committed together with their outbox event",
)

WRITE_ERRORS_TOTAL = Counter(
    "outbox_write_errors_total",
    "Rolled back order writes",
    ["stage"],
)

WRITE_LATENCY = Histogram(
    "outbox_write_latency_seconds",
    "Duration of the transactional order write",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ---------------------------------------------------------------------------
# Relay metrics
# ---------------------------------------------------------------------------

EVENTS_PUBLISHED_TOTAL = Counter(
    "outbox_events_published_total",
    "Outbox events published to the notification channel",
    ["event_type"],
)

RELAY_BATCHES_TOTAL = Counter(
    "outbox_relay_batches_total",
    "Relay batch outcomes",
    ["result"],
)

RELAY_BATCH_SIZE = Histogram(
    "outbox_relay_batch_size",
    "Number of outbox rows claimed per relay batch",
    buckets=[0, 1, 2, 5, 10, 25, 50, 100],
)


def start_metrics_server(port: int = 9090, mode: str = "unknown") -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({
        "version": __version__,
        "mode": mode,
    })
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_admission(outcome: AdmitOutcome) -> None:
    """Record an idempotency guard decision."""
    ADMISSIONS_TOTAL.labels(outcome=outcome.value).inc()


def record_order_created(latency_seconds: float) -> None:
    ORDERS_CREATED_TOTAL.inc()
    WRITE_LATENCY.observe(latency_seconds)


def record_write_error(stage: str) -> None:
    WRITE_ERRORS_TOTAL.labels(stage=stage).inc()


def record_published(event_type: str) -> None:
    EVENTS_PUBLISHED_TOTAL.labels(event_type=event_type).inc()


def record_batch(result: str, size: int) -> None:
    """Record a relay batch outcome ("committed", "empty", "failed")."""
    RELAY_BATCHES_TOTAL.labels(result=result).inc()
    RELAY_BATCH_SIZE.observe(size)
