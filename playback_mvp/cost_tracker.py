"""Token usage and spend tracking for decision-service calls."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List

logger = logging.getLogger("playback_mvp.cost")

# USD per token, (prompt, completion).
MODEL_PRICING: Dict[str, tuple] = {
    "gpt-4o": (2.5 / 1_000_000, 10.0 / 1_000_000),
    "gpt-4o-mini": (0.15 / 1_000_000, 0.6 / 1_000_000),
    "gpt-4": (30.0 / 1_000_000, 60.0 / 1_000_000),
    "gpt-3.5-turbo": (0.5 / 1_000_000, 1.5 / 1_000_000),
}
FALLBACK_PRICING_MODEL = "gpt-4o-mini"


@dataclass
class UsageRecord:
    model: str
    prompt_tokens: int
    completion_tokens: int
    cost: float


class CostTracker:
    """Accumulates usage across one or more playback runs."""

    def __init__(self) -> None:
        self.records: List[UsageRecord] = []

    @staticmethod
    def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
        prompt_price, completion_price = MODEL_PRICING.get(model, MODEL_PRICING[FALLBACK_PRICING_MODEL])
        return prompt_price * prompt_tokens + completion_price * completion_tokens

    def record_usage(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        if model not in MODEL_PRICING:
            logger.warning("Unknown model %s, pricing as %s", model, FALLBACK_PRICING_MODEL)
        cost = self.estimate_cost(model, prompt_tokens, completion_tokens)
        self.records.append(UsageRecord(model, prompt_tokens, completion_tokens, cost))
        return cost

    def total_cost(self) -> float:
        return sum(record.cost for record in self.records)

    def total_tokens(self) -> Dict[str, int]:
        return {
            "prompt": sum(record.prompt_tokens for record in self.records),
            "completion": sum(record.completion_tokens for record in self.records),
        }

    def is_over_budget(self, cap_usd: float) -> bool:
        return self.total_cost() > cap_usd

    def summary(self) -> Dict[str, object]:
        by_model: Dict[str, Dict[str, float]] = {}
        for record in self.records:
            stats = by_model.setdefault(record.model, {"calls": 0, "tokens": 0, "cost": 0.0})
            stats["calls"] += 1
            stats["tokens"] += record.prompt_tokens + record.completion_tokens
            stats["cost"] += record.cost
        return {
            "totalCost": self.total_cost(),
            "breakdown": [{"model": model, **stats} for model, stats in by_model.items()],
        }

    def formatted_cost(self) -> str:
        return f"${self.total_cost():.4f}"

    def reset(self) -> None:
        self.records = []
