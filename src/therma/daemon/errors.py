"""Error taxonomy for the journal pipeline.

Every terminal error is an ``HTTPException`` carrying a stable,
machine-readable ``code`` next to the human-readable message, so core
modules can raise them directly and the app renders them uniformly as
``{"error": ..., "code": ..., "details": ...}``.

Running over budget is deliberately absent from this module: it is an
admission outcome (``SpendCheck.allowed is False``) that triggers
degradation, never an error.
"""

from __future__ import annotations

from fastapi import HTTPException


class ServiceError(HTTPException):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal error"

    def __init__(self, message: str | None = None, *, details: str = ""):
        self.message = message or type(self).message
        self.details = details
        super().__init__(status_code=type(self).status_code, detail=self.message)

    def to_body(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        if self.details:
            return f"{self.code}: {self.message} ({self.details})"
        return f"{self.code}: {self.message}"


class Unauthorized(ServiceError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Invalid or missing authentication token"


class InvalidRequest(ServiceError):
    status_code = 400
    code = "INVALID_REQUEST"
    message = "Invalid JSON in request body"


class ValidationFailed(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Request validation failed"


class EntryNotFound(ServiceError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Journal entry not found"


class ConcurrentDuplicate(ServiceError):
    status_code = 409
    code = "CONCURRENT_DUPLICATE"
    message = "Request is already being processed"


class KeyConflict(ServiceError):
    status_code = 409
    code = "IDEMPOTENCY_KEY_CONFLICT"
    message = "Idempotency key conflict: same key used for different request"


class EncryptionFailed(ServiceError):
    status_code = 502
    code = "ENCRYPTION_FAILED"
    message = "Failed to encrypt or decrypt protected data"


class StoreUnavailable(ServiceError):
    status_code = 503
    code = "STORE_UNAVAILABLE"
    message = "Backing store unavailable"


class ConditionalWriteFailed(Exception):
    """A conditional put lost against an existing item.

    Internal to the store adapters and their callers; the idempotency
    coordinator turns it into ``ConcurrentDuplicate``.
    """
