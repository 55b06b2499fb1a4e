"""Journal entry creation: deduplicate, admit or degrade, encrypt, persist, record cost."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, UTC
from decimal import Decimal
from enum import StrEnum
from typing import Callable

from pydantic import ValidationError

from ..control import IdempotencyCoordinator, IdempotentOutcome
from ..encryption import PHICipher
from ..errors import EntryNotFound, InvalidRequest, StoreUnavailable, ValidationFailed
from ..ledger import SpendCheck, SpendLedger, estimate_text_cost
from ..observability import WorkflowNotifier
from ..utils.config_loader import LLMConfig
from ..utils.logging_config import StructuredLogger
from .models import JournalEntry, JournalEntryRequest
from .repository import EntryRepository

logger = StructuredLogger(__name__)

CREATE_OPERATION = "POST /journal-entries"
ENTRY_CREATED_EVENT = "journal_entry.created"


class Stage(StrEnum):
    DEDUPLICATING = "deduplicating"
    ADMISSION_CHECK = "admission_check"
    ENCRYPTING = "encrypting"
    PERSISTING = "persisting"
    COST_RECORDING = "cost_recording"
    DEGRADING = "degrading"
    COMPLETED = "completed"


def new_entry_id() -> str:
    return f"entry_{uuid.uuid4().hex}"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def parse_entry_request(raw_body: str) -> JournalEntryRequest:
    try:
        data = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise InvalidRequest(details=str(exc)) from exc
    if not isinstance(data, dict):
        raise InvalidRequest(details="request body must be a JSON object")
    try:
        return JournalEntryRequest.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        message = str(first.get("msg", "invalid value")).removeprefix("Value error, ")
        raise ValidationFailed(f"{field}: {message}") from exc


class JournalEntryService:
    """Runs one authenticated create request through the pipeline.

    Everything after deduplication runs inside the coordinator's work
    closure, so a replayed request returns the stored entry before any
    admission, encryption, persistence or cost side effect.
    """

    def __init__(
        self,
        *,
        coordinator: IdempotencyCoordinator,
        ledger: SpendLedger,
        cipher: PHICipher,
        repository: EntryRepository,
        llm: LLMConfig,
        notifier: WorkflowNotifier | None = None,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = new_entry_id,
    ):
        self._coordinator = coordinator
        self._ledger = ledger
        self._cipher = cipher
        self._repository = repository
        self._llm = llm
        self._notifier = notifier
        self._clock = clock
        self._new_id = id_factory

    def estimate_cost(self, request: JournalEntryRequest) -> Decimal:
        return estimate_text_cost(
            request.content,
            self._llm.output_tokens,
            self._llm.model,
            self._llm.pricing,
        )

    def create_entry(
        self,
        user_id: str,
        raw_body: str,
        *,
        idempotency_key: str | None = None,
    ) -> IdempotentOutcome[JournalEntry]:
        request = parse_entry_request(raw_body)
        client_key = idempotency_key or request.idempotency_key

        logger.debug("Journal stage", stage=str(Stage.DEDUPLICATING), user_id=user_id)
        return self._coordinator.process(
            user_id,
            CREATE_OPERATION,
            raw_body,
            lambda: self._execute(user_id, request),
            idempotency_key=client_key,
            response_model=JournalEntry,
        )

    def _execute(self, user_id: str, request: JournalEntryRequest) -> JournalEntry:
        estimated_cost = self.estimate_cost(request)
        logger.debug("Journal stage", stage=str(Stage.ADMISSION_CHECK), user_id=user_id, estimated_cost=str(estimated_cost))
        check = self._ledger.check_limit(user_id, estimated_cost)
        if not check.allowed:
            return self._degrade(user_id, request, check)

        logger.debug("Journal stage", stage=str(Stage.ENCRYPTING), user_id=user_id)
        # Any failure here aborts before anything is persisted
        content = self._cipher.encrypt(request.content)
        mood = self._cipher.encrypt(request.mood)
        tags = self._cipher.encrypt_many(request.tags)

        now = self._clock()
        entry = JournalEntry(
            id=self._new_id(),
            user_id=user_id,
            content=content,
            mood=mood,
            tags=tags,
            created_at=now,
            updated_at=now,
            encrypted=True,
        )

        logger.debug("Journal stage", stage=str(Stage.PERSISTING), user_id=user_id, entry_id=entry.id)
        self._repository.save(entry)

        logger.debug("Journal stage", stage=str(Stage.COST_RECORDING), user_id=user_id, entry_id=entry.id)
        try:
            self._ledger.record(user_id, estimated_cost)
        except StoreUnavailable as exc:
            logger.warning("Failed to record spend", user_id=user_id, entry_id=entry.id, error=exc.details)

        if self._notifier is not None:
            self._notifier.notify(
                ENTRY_CREATED_EVENT,
                {"entry_id": entry.id, "user_id": user_id, "encrypted": True},
            )

        logger.info(
            "Journal entry created",
            stage=str(Stage.COMPLETED),
            user_id=user_id,
            entry_id=entry.id,
            cost=str(estimated_cost),
        )
        return entry

    def _degrade(self, user_id: str, request: JournalEntryRequest, check: SpendCheck) -> JournalEntry:
        """Return the entry unencrypted and unpersisted, with no cost recorded."""
        now = self._clock()
        entry = JournalEntry(
            id=self._new_id(),
            user_id=user_id,
            content=request.content,
            mood=request.mood,
            tags=list(request.tags),
            created_at=now,
            updated_at=now,
            encrypted=False,
        )
        logger.info(
            "Journal entry degraded",
            stage=str(Stage.DEGRADING),
            user_id=user_id,
            entry_id=entry.id,
            code=check.code,
            remaining=str(check.remaining),
        )
        return entry

    def read_entry(self, user_id: str, entry_id: str) -> JournalEntry:
        entry = self._repository.get(entry_id)
        if entry is None or entry.user_id != user_id:
            raise EntryNotFound()
        if not entry.encrypted:
            return entry
        return entry.model_copy(
            update={
                "content": self._cipher.decrypt(entry.content),
                "mood": self._cipher.decrypt(entry.mood),
                "tags": self._cipher.decrypt_many(entry.tags),
                "encrypted": False,
            }
        )
