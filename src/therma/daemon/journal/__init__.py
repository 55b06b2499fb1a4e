"""Journal entries: models, persistence and the create pipeline."""

from .models import JournalEntry, JournalEntryRequest, SpendSummary
from .repository import EntryRepository, MemoryEntryRepository, PostgresEntryRepository
from .service import CREATE_OPERATION, JournalEntryService, parse_entry_request

__all__ = [
    "JournalEntry",
    "JournalEntryRequest",
    "SpendSummary",
    "EntryRepository",
    "MemoryEntryRepository",
    "PostgresEntryRepository",
    "CREATE_OPERATION",
    "JournalEntryService",
    "parse_entry_request",
]
