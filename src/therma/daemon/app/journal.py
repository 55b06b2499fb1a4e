"""Journal entry and spend endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..auth import get_user_from_token
from ..control import IDEMPOTENCY_HEADER, REPLAY_HEADER
from ..errors import InvalidRequest
from ..journal import JournalEntry, SpendSummary

router = APIRouter(tags=["journal"])


def _services(request: Request):
    return request.app.state.services


@router.post("/journal-entries", status_code=201)
async def create_journal_entry(
    request: Request,
    user_id: str = Depends(get_user_from_token),
):
    raw = await request.body()
    try:
        raw_body = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidRequest(details="request body must be UTF-8") from exc

    journal = _services(request).journal
    outcome = await asyncio.to_thread(
        journal.create_entry,
        user_id,
        raw_body,
        idempotency_key=request.headers.get(IDEMPOTENCY_HEADER),
    )

    headers = {REPLAY_HEADER: "true"} if outcome.replayed else None
    return JSONResponse(
        status_code=201,
        content=outcome.value.model_dump(mode="json"),
        headers=headers,
    )


@router.get("/journal-entries/{entry_id}", response_model=JournalEntry)
async def get_journal_entry(
    entry_id: str,
    request: Request,
    user_id: str = Depends(get_user_from_token),
):
    journal = _services(request).journal
    return await asyncio.to_thread(journal.read_entry, user_id, entry_id)


@router.get("/spend/today", response_model=SpendSummary)
async def get_spend_today(
    request: Request,
    user_id: str = Depends(get_user_from_token),
):
    ledger = _services(request).ledger
    # Reading through check_limit gives the default-initialized view
    # without writing a record.
    check = await asyncio.to_thread(ledger.check_limit, user_id, 0)
    record = await asyncio.to_thread(ledger.get_summary, user_id)
    return SpendSummary(
        user_id=user_id,
        date=ledger.today(),
        request_count=record.request_count if record else 0,
        accumulated_cost=str(check.current_cost),
        daily_limit=str(check.daily_limit),
        remaining=str(check.remaining),
    )
