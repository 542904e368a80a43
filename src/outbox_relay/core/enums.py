"""Enumerations used across the outbox service."""

from enum import Enum


class Mode(str, Enum):
    LOCAL = "local"  # In-memory store and channel, no external services
    LIVE = "live"  # PostgreSQL + Redis


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


class WriteStage(str, Enum):
    """Step of the transactional writer in progress when a failure occurred."""

    BEGIN = "begin"
    INSERT_ORDER = "insert_order"
    MARSHAL = "marshal"
    INSERT_OUTBOX = "insert_outbox"
    COMMIT = "commit"


class AdmitOutcome(str, Enum):
    PROCEED = "proceed"
    IN_FLIGHT = "in_flight"
    CACHED = "cached"
