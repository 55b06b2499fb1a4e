"""Journal entry persistence: an opaque write plus lookup by id."""

from __future__ import annotations

import threading
from typing import Protocol

import psycopg
from psycopg.types.json import Jsonb

from ..db import get_db_connection
from ..errors import StoreUnavailable
from ..utils.logging_config import StructuredLogger
from .models import JournalEntry

logger = StructuredLogger(__name__)


class EntryRepository(Protocol):
    def save(self, entry: JournalEntry) -> None:
        ...

    def get(self, entry_id: str) -> JournalEntry | None:
        ...


class MemoryEntryRepository:
    def __init__(self):
        self._entries: dict[str, JournalEntry] = {}
        self._lock = threading.Lock()

    def save(self, entry: JournalEntry) -> None:
        with self._lock:
            self._entries[entry.id] = entry.model_copy(deep=True)

    def get(self, entry_id: str) -> JournalEntry | None:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.model_copy(deep=True) if entry else None

    def all(self) -> list[JournalEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._entries.values()]


class PostgresEntryRepository:
    def __init__(self, dsn: str | None = None):
        self._dsn = dsn

    def save(self, entry: JournalEntry) -> None:
        try:
            with get_db_connection(self._dsn) as conn:
                conn.execute(
                    """
                    INSERT INTO journal_entries (id, user_id, payload, encrypted, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (
                        entry.id,
                        entry.user_id,
                        Jsonb(entry.model_dump(mode="json")),
                        entry.encrypted,
                        entry.created_at,
                    ),
                )
                conn.commit()
        except psycopg.Error as exc:
            logger.error("Entry write failed", entry_id=entry.id, error=type(exc).__name__)
            raise StoreUnavailable("Failed to persist journal entry", details=type(exc).__name__) from exc

    def get(self, entry_id: str) -> JournalEntry | None:
        try:
            with get_db_connection(self._dsn) as conn:
                row = conn.execute(
                    "SELECT payload FROM journal_entries WHERE id = %s",
                    (entry_id,),
                ).fetchone()
        except psycopg.Error as exc:
            logger.error("Entry read failed", entry_id=entry_id, error=type(exc).__name__)
            raise StoreUnavailable("Failed to read journal entry", details=type(exc).__name__) from exc
        if not row:
            return None
        return JournalEntry.model_validate(row["payload"])
