"""Static price table and cost estimation (USD per 1M tokens)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from photoverify.services.vision.base import DEFAULT_MODELS, TokenUsage


@dataclass(frozen=True)
class ModelPrice:
    provider: str
    name: str
    input_per_1m: float
    output_per_1m: float


PRICING: Dict[str, ModelPrice] = {
    "gpt-4o-mini": ModelPrice("openai", "GPT-4o Mini", 0.15, 0.60),
    "gpt-4o": ModelPrice("openai", "GPT-4o", 2.50, 10.00),
    "gemini-2.0-flash": ModelPrice("gemini", "Gemini 2.0 Flash", 0.10, 0.40),
    "gemini-1.5-flash": ModelPrice("gemini", "Gemini 1.5 Flash", 0.075, 0.30),
    "gemini-1.5-pro": ModelPrice("gemini", "Gemini 1.5 Pro", 1.25, 5.00),
    "claude-3-5-haiku-latest": ModelPrice("anthropic", "Claude 3.5 Haiku", 0.80, 4.00),
    "claude-3-5-sonnet-latest": ModelPrice("anthropic", "Claude 3.5 Sonnet", 3.00, 15.00),
}


def _bare_model(model: str) -> str:
    # "openai/gpt-4o-mini" -> "gpt-4o-mini"
    return (model or "").strip().split("/", 1)[-1]


def price_for(model: str) -> Optional[ModelPrice]:
    return PRICING.get(_bare_model(model))


def estimate_cost(model: str, usage: TokenUsage) -> float:
    """Unknown models cost 0.0; results are rounded to 6 decimals."""
    price = price_for(model)
    if price is None:
        return 0.0
    cost = (
        usage.input_tokens * price.input_per_1m + usage.output_tokens * price.output_per_1m
    ) / 1_000_000
    return round(cost, 6)


def available_models(configured: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for model_id, price in PRICING.items():
        out.append(
            {
                "id": model_id,
                "provider": price.provider,
                "name": price.name,
                "inputPer1mUsd": price.input_per_1m,
                "outputPer1mUsd": price.output_per_1m,
                "default": DEFAULT_MODELS.get(price.provider) == model_id,
                "configured": configured is None or price.provider in configured,
            }
        )
    return out
