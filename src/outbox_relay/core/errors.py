"""Custom exception hierarchy for the outbox service."""

from __future__ import annotations

from .enums import WriteStage


class OutboxRelayError(Exception):
    """Base exception for all outbox service errors."""

    transient: bool = False


# --- Configuration ---
class ConfigError(OutboxRelayError):
    """Invalid or missing configuration."""


# --- Write path ---
class LockContention(OutboxRelayError):
    """A request with the same idempotency token is already in flight.

    Not a failure: the caller must reject the request with a
    "retry shortly" signal and must not touch the durable store.
    """

    transient = True

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"Request with idempotency token {token!r} is already in flight")


class WriteError(OutboxRelayError):
    """The transactional write failed and was rolled back in full."""

    transient = True

    def __init__(self, stage: WriteStage, cause: BaseException | None = None) -> None:
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Order write failed at stage [{stage.value}]{detail}")


# --- Relay ---
class PublishError(OutboxRelayError):
    """Publishing an outbox event to the notification channel failed."""

    transient = True

    def __init__(self, event_id: str, cause: BaseException | None = None) -> None:
        self.event_id = event_id
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to publish outbox event {event_id}{detail}")


# --- Connectivity ---
class StoreUnavailable(OutboxRelayError):
    """The durable store could not be reached."""

    transient = True


class ChannelUnavailable(OutboxRelayError):
    """The key/value store or notification channel could not be reached."""

    transient = True
