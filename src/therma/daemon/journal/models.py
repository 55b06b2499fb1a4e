from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class JournalEntryRequest(BaseModel):
    content: str
    mood: str = ""
    tags: list[str] = Field(default_factory=list)
    idempotency_key: Optional[str] = Field(default=None, max_length=256)

    @field_validator("content")
    def content_required(cls, v):
        if v == "":
            raise ValueError("Content is required")
        return v


class JournalEntry(BaseModel):
    """Journal entry as persisted and returned.

    ``content``, ``mood`` and ``tags`` hold ciphertext when ``encrypted`` is
    true and plaintext when the entry was produced on the degraded path.
    """

    id: str
    user_id: str
    content: str
    mood: str
    tags: list[str]
    created_at: datetime
    updated_at: datetime
    encrypted: bool


class SpendSummary(BaseModel):
    user_id: str
    date: str
    request_count: int
    accumulated_cost: str
    daily_limit: str
    remaining: str
