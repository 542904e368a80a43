"""Transactional outbox service: idempotent order writes and event relay."""

__version__ = "0.1.0"
