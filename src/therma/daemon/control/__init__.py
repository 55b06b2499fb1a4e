"""Request control: idempotent execution."""

from .idempotency import (
    IDEMPOTENCY_HEADER,
    REPLAY_HEADER,
    IdempotencyCoordinator,
    IdempotencyRecord,
    IdempotencyStatus,
    IdempotentOutcome,
    idempotency_key_for,
    request_hash_for,
)

__all__ = [
    "IDEMPOTENCY_HEADER",
    "REPLAY_HEADER",
    "IdempotencyCoordinator",
    "IdempotencyRecord",
    "IdempotencyStatus",
    "IdempotentOutcome",
    "idempotency_key_for",
    "request_hash_for",
]
