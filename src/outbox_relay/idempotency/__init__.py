"""Idempotency guard: dedupes retried client requests by token."""

from outbox_relay.idempotency.guard import (
    IN_FLIGHT_MARKER,
    Admission,
    CachedResult,
    IdempotencyGuard,
    InFlight,
    Proceed,
)

__all__ = [
    "IN_FLIGHT_MARKER",
    "Admission",
    "CachedResult",
    "IdempotencyGuard",
    "InFlight",
    "Proceed",
]
