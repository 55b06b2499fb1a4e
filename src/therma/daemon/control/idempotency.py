"""Idempotency keys, request fingerprints and the execute-once coordinator.

A request is identified by ``key`` (user + operation + body, or user +
operation + client key when the caller supplies an ``Idempotency-Key``)
and compared by ``request_hash`` (body alone). The first attempt claims
the key with a conditional insert of a ``pending`` record stamped with a
fresh ``attempt_id``; only that attempt runs the work and moves the
record to ``completed`` or ``failed``. Later attempts replay the stored
response, fail fast while the first is in flight, or are rejected when
the key was bound to a different body.

Every write after the claim is conditioned on the item read or written
earlier (``attempt_id``), so a stale reader can never remove or overwrite
a newer claim.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from enum import StrEnum
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel

from ..errors import ConcurrentDuplicate, ConditionalWriteFailed, KeyConflict, StoreUnavailable
from ..store import TTL_ATTRIBUTE, Item, KeyValueTable
from ..utils.deterministic import fingerprint, key_prefix
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

IDEMPOTENCY_HEADER = "idempotency-key"
REPLAY_HEADER = "Idempotent-Replayed"
DEFAULT_TTL = timedelta(hours=24)

T = TypeVar("T")


class IdempotencyStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def idempotency_key_for(user_id: str, operation: str, raw_body: str, client_key: str | None = None) -> str:
    """Key under which the single execution of a request is recorded."""
    normalized = (client_key or "").strip()
    if normalized:
        return fingerprint(user_id, operation, normalized)
    return fingerprint(user_id, operation, raw_body)


def request_hash_for(raw_body: str) -> str:
    return fingerprint(raw_body)


def new_attempt_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class IdempotencyRecord:
    key: str
    user_id: str
    request_hash: str
    status: IdempotencyStatus
    created_at: datetime
    expires_at: datetime
    attempt_id: str = ""
    response: str | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "key": self.key,
            "user_id": self.user_id,
            "request_hash": self.request_hash,
            "status": str(self.status),
            "attempt_id": self.attempt_id,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            TTL_ATTRIBUTE: int(self.expires_at.timestamp()),
        }
        if self.response is not None:
            item["response"] = self.response
        if self.updated_at is not None:
            item["updated_at"] = _iso(self.updated_at)
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "IdempotencyRecord":
        """Parse a stored item; raises ``ValueError`` when it is malformed."""
        try:
            updated = item.get("updated_at")
            return cls(
                key=str(item["key"]),
                user_id=str(item.get("user_id", "")),
                request_hash=str(item["request_hash"]),
                status=IdempotencyStatus(str(item["status"])),
                created_at=_parse_iso(str(item["created_at"])),
                expires_at=_parse_iso(str(item["expires_at"])),
                attempt_id=str(item.get("attempt_id", "")),
                response=item.get("response"),
                updated_at=_parse_iso(str(updated)) if updated else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed idempotency record: {exc!r}") from exc


def _identity(item: Item) -> dict[str, Any]:
    """Attributes that pin a conditional write to exactly this stored item."""
    if item.get("attempt_id"):
        return {"attempt_id": item["attempt_id"]}
    return {k: v for k, v in item.items() if k != "key"}


@dataclass
class IdempotentOutcome(Generic[T]):
    value: T
    replayed: bool
    key: str


class IdempotencyCoordinator:
    """Maps (user, operation, body) to a single execution of ``work``."""

    def __init__(
        self,
        table: KeyValueTable,
        *,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utc_now,
        attempt_ids: Callable[[], str] = new_attempt_id,
    ):
        self._table = table
        self._ttl = ttl
        self._clock = clock
        self._new_attempt_id = attempt_ids

    def _live(self, key: str, item: Item | None) -> IdempotencyRecord | None:
        if item is None:
            return None
        try:
            record = IdempotencyRecord.from_item(item)
        except ValueError as exc:
            logger.warning("Discarding malformed idempotency record", key=key_prefix(key), error=str(exc))
            return None
        if record.is_expired(self._clock()):
            return None
        return record

    def lookup(self, key: str) -> IdempotencyRecord | None:
        """Fetch a live record.

        Expired or malformed records are deleted and reported absent. The
        delete is conditioned on the item that was read; if it lost to a
        newer claim, that claim is re-read and returned.
        """
        item = self._table.get({"key": key})
        record = self._live(key, item)
        if item is None or record is not None:
            return record

        logger.info("Idempotency record expired", key=key_prefix(key), status=str(item.get("status", "")))
        try:
            self._table.delete({"key": key}, expected=_identity(item))
        except ConditionalWriteFailed:
            logger.info("Expired record already replaced", key=key_prefix(key))
            return self._live(key, self._table.get({"key": key}))
        return None

    def process(
        self,
        user_id: str,
        operation: str,
        raw_body: str,
        work: Callable[[], T],
        *,
        idempotency_key: str | None = None,
        response_model: type[BaseModel] | None = None,
    ) -> IdempotentOutcome[T]:
        key = idempotency_key_for(user_id, operation, raw_body, idempotency_key)
        request_hash = request_hash_for(raw_body)

        existing = self.lookup(key)
        replace_when = None
        if existing is not None:
            if existing.request_hash != request_hash:
                logger.warning("Idempotency key conflict", key=key_prefix(key), user_id=user_id, operation=operation)
                raise KeyConflict()
            if existing.status == IdempotencyStatus.COMPLETED:
                logger.info("Idempotent replay", key=key_prefix(key), user_id=user_id, operation=operation)
                return IdempotentOutcome(
                    value=self._deserialize(existing.response, response_model),
                    replayed=True,
                    key=key,
                )
            if existing.status == IdempotencyStatus.PENDING:
                logger.info("Duplicate while in flight", key=key_prefix(key), user_id=user_id)
                raise ConcurrentDuplicate()
            # A failed attempt may be resent; the overwrite only succeeds
            # while the stored record is still that failed attempt.
            replace_when = {"status": str(IdempotencyStatus.FAILED), "request_hash": request_hash}
            if existing.attempt_id:
                replace_when["attempt_id"] = existing.attempt_id
            logger.info("Retrying failed request", key=key_prefix(key), user_id=user_id)

        now = self._clock()
        attempt_id = self._new_attempt_id()
        record = IdempotencyRecord(
            key=key,
            user_id=user_id,
            request_hash=request_hash,
            status=IdempotencyStatus.PENDING,
            created_at=now,
            expires_at=now + self._ttl,
            attempt_id=attempt_id,
        )
        try:
            self._table.put_if_absent(record.to_item(), replace_when=replace_when)
        except ConditionalWriteFailed:
            logger.info("Lost idempotency claim race", key=key_prefix(key), user_id=user_id)
            raise ConcurrentDuplicate() from None

        try:
            result = work()
            response = self._serialize(result)
        except Exception as exc:
            self._mark_failed(key, attempt_id, exc)
            raise

        try:
            self._table.update(
                {"key": key},
                {
                    "status": str(IdempotencyStatus.COMPLETED),
                    "response": response,
                    "updated_at": _iso(self._clock()),
                },
                expected={"attempt_id": attempt_id},
            )
        except ConditionalWriteFailed:
            logger.warning("Idempotency claim lost before completion", key=key_prefix(key), user_id=user_id)
        except StoreUnavailable as exc:
            # The record stays pending until expiry and keeps blocking duplicates.
            logger.warning("Failed to complete idempotency record", key=key_prefix(key), error=str(exc))

        return IdempotentOutcome(value=result, replayed=False, key=key)

    def _mark_failed(self, key: str, attempt_id: str, exc: Exception) -> None:
        try:
            self._table.update(
                {"key": key},
                {
                    "status": str(IdempotencyStatus.FAILED),
                    "response": f"error: {type(exc).__name__}: {exc}",
                    "updated_at": _iso(self._clock()),
                },
                expected={"attempt_id": attempt_id},
            )
        except Exception as update_exc:
            logger.error(
                "Failed to mark idempotency record failed",
                key=key_prefix(key),
                error=str(update_exc),
                original_error=type(exc).__name__,
            )
        else:
            logger.info("Idempotent execution failed", key=key_prefix(key), error=type(exc).__name__)

    @staticmethod
    def _serialize(value: Any) -> str:
        if isinstance(value, BaseModel):
            return value.model_dump_json()
        return json.dumps(value, sort_keys=True, default=str)

    @staticmethod
    def _deserialize(text: str | None, response_model: type[BaseModel] | None) -> Any:
        if text is None:
            return None
        if response_model is not None:
            return response_model.model_validate_json(text)
        return json.loads(text)
