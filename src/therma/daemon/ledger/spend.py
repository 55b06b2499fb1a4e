"""Per-user, per-day spend ledger with a non-mutating admission check."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from decimal import Decimal
from typing import Any, Callable

from ..store import TTL_ATTRIBUTE, KeyValueTable
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

DEFAULT_DAILY_LIMIT = Decimal("5.00")
DEFAULT_RECORD_TTL = timedelta(days=7)
COST_LIMIT_EXCEEDED = "COST_LIMIT_EXCEEDED"

LimitResolver = Callable[[str], Decimal]


def fixed_limit(limit: Decimal = DEFAULT_DAILY_LIMIT) -> LimitResolver:
    """Resolver that gives every user the same daily limit."""

    def _resolve(user_id: str) -> Decimal:
        return limit

    return _resolve


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class SpendRecord:
    user_id: str
    date: str
    request_count: int
    accumulated_cost: Decimal
    daily_limit: Decimal
    created_at: str
    updated_at: str

    def to_item(self, ttl: int) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "date": self.date,
            "request_count": self.request_count,
            "accumulated_cost": self.accumulated_cost,
            "daily_limit": self.daily_limit,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            TTL_ATTRIBUTE: ttl,
        }

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "SpendRecord":
        return cls(
            user_id=str(item["user_id"]),
            date=str(item["date"]),
            request_count=int(item.get("request_count", 0)),
            accumulated_cost=_as_decimal(item.get("accumulated_cost", 0)),
            daily_limit=_as_decimal(item.get("daily_limit", DEFAULT_DAILY_LIMIT)),
            created_at=str(item.get("created_at", "")),
            updated_at=str(item.get("updated_at", "")),
        )


@dataclass
class SpendCheck:
    allowed: bool
    remaining: Decimal
    current_cost: Decimal
    daily_limit: Decimal
    reason: str | None = None
    code: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "allowed": self.allowed,
            "remaining": str(self.remaining),
            "current_cost": str(self.current_cost),
            "daily_limit": str(self.daily_limit),
        }
        if self.reason:
            out["reason"] = self.reason
            out["code"] = self.code
        return out


class SpendLedger:
    """Tracks daily consumption against a per-user limit.

    ``check_limit`` never writes, so a caller can check, decide to degrade
    and never record anything. ``record`` is a read-modify-write without a
    condition: two concurrent records for the same user may lose one
    increment. Admission is advisory, so this is accepted.
    """

    def __init__(
        self,
        table: KeyValueTable,
        *,
        limit_resolver: LimitResolver | None = None,
        record_ttl: timedelta = DEFAULT_RECORD_TTL,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._table = table
        self._resolve_limit = limit_resolver or fixed_limit()
        self._record_ttl = record_ttl
        self._clock = clock

    def today(self) -> str:
        return self._clock().strftime("%Y-%m-%d")

    def _load(self, user_id: str, date: str) -> SpendRecord | None:
        item = self._table.get({"user_id": user_id, "date": date})
        if item is None:
            return None
        return SpendRecord.from_item(item)

    def _fresh(self, user_id: str, date: str) -> SpendRecord:
        now = self._clock().isoformat()
        return SpendRecord(
            user_id=user_id,
            date=date,
            request_count=0,
            accumulated_cost=Decimal("0"),
            daily_limit=_as_decimal(self._resolve_limit(user_id)),
            created_at=now,
            updated_at=now,
        )

    def check_limit(self, user_id: str, estimated_cost: Decimal) -> SpendCheck:
        estimated_cost = _as_decimal(estimated_cost)
        date = self.today()
        record = self._load(user_id, date) or self._fresh(user_id, date)

        result = SpendCheck(
            allowed=True,
            remaining=record.daily_limit - record.accumulated_cost,
            current_cost=record.accumulated_cost,
            daily_limit=record.daily_limit,
        )
        if record.accumulated_cost + estimated_cost > record.daily_limit:
            result.allowed = False
            result.code = COST_LIMIT_EXCEEDED
            result.reason = (
                f"Daily limit exceeded. Current: ${record.accumulated_cost:.4f}, "
                f"Request: ${estimated_cost:.4f}, Limit: ${record.daily_limit:.4f}"
            )
            logger.info(
                "Spend limit reached",
                user_id=user_id,
                date=date,
                current_cost=str(record.accumulated_cost),
                estimated_cost=str(estimated_cost),
                daily_limit=str(record.daily_limit),
            )
        return result

    def record(self, user_id: str, actual_cost: Decimal) -> SpendRecord:
        actual_cost = _as_decimal(actual_cost)
        date = self.today()
        record = self._load(user_id, date) or self._fresh(user_id, date)

        record.request_count += 1
        record.accumulated_cost += actual_cost
        now = self._clock()
        record.updated_at = now.isoformat()
        ttl = int((now + self._record_ttl).timestamp())

        self._table.put(record.to_item(ttl))
        logger.info(
            "Spend recorded",
            user_id=user_id,
            date=date,
            cost=str(actual_cost),
            accumulated_cost=str(record.accumulated_cost),
            request_count=record.request_count,
        )
        return record

    def get_summary(self, user_id: str) -> SpendRecord | None:
        return self._load(user_id, self.today())
