"""Transactional outbox: atomic order + event writes and the relay worker."""

from outbox_relay.outbox.relay import OutboxRelay
from outbox_relay.outbox.writer import TransactionalWriter

__all__ = ["OutboxRelay", "TransactionalWriter"]
