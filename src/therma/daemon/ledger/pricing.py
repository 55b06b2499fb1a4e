"""LLM cost estimation from per-1K-token prices."""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping

from ..utils.config_loader import DEFAULT_MODEL, ModelPricing

_THOUSAND = Decimal(1000)


def estimate_llm_cost(
    input_tokens: int,
    output_tokens: int,
    model: str,
    pricing: Mapping[str, ModelPricing],
) -> Decimal:
    """Price a request; unknown models are priced as the default model."""
    prices = pricing.get(model) or pricing.get(DEFAULT_MODEL)
    if prices is None:
        raise ValueError(f"No pricing for model '{model}' and no default pricing")
    input_cost = (Decimal(input_tokens) / _THOUSAND) * prices.input_per_1k
    output_cost = (Decimal(output_tokens) / _THOUSAND) * prices.output_per_1k
    return input_cost + output_cost


def estimate_text_tokens(text: str) -> int:
    """Input tokens for ``text``, counted as one per UTF-8 byte (an upper bound)."""
    return len(text.encode("utf-8"))


def estimate_text_cost(
    text: str,
    output_tokens: int,
    model: str,
    pricing: Mapping[str, ModelPricing],
) -> Decimal:
    return estimate_llm_cost(estimate_text_tokens(text), output_tokens, model, pricing)
