"""Spend ledger and cost estimation."""

from .pricing import estimate_llm_cost, estimate_text_cost, estimate_text_tokens
from .spend import (
    COST_LIMIT_EXCEEDED,
    DEFAULT_DAILY_LIMIT,
    LimitResolver,
    SpendCheck,
    SpendLedger,
    SpendRecord,
    fixed_limit,
)

__all__ = [
    "COST_LIMIT_EXCEEDED",
    "DEFAULT_DAILY_LIMIT",
    "LimitResolver",
    "SpendCheck",
    "SpendLedger",
    "SpendRecord",
    "fixed_limit",
    "estimate_llm_cost",
    "estimate_text_cost",
    "estimate_text_tokens",
]
