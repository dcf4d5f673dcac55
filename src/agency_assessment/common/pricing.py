"""Model tiers and token pricing (USD per 1M tokens)."""
from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ModelTier:
    name: str
    model_id: str
    input_per_million: float
    output_per_million: float

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1_000_000) * self.input_per_million + (
            output_tokens / 1_000_000
        ) * self.output_per_million


MODEL_TIERS: dict[str, ModelTier] = {
    "sonnet": ModelTier(
        name="sonnet",
        model_id="claude-sonnet-4-5-20250929",
        input_per_million=3.0,
        output_per_million=15.0,
    ),
    "haiku": ModelTier(
        name="haiku",
        model_id="claude-haiku-4-5-20251001",
        input_per_million=0.25,
        output_per_million=1.25,
    ),
}


def get_tier(name: str) -> ModelTier:
    """Look up a tier by its short name ("sonnet" or "haiku")."""
    try:
        return MODEL_TIERS[name]
    except KeyError:
        raise KeyError(f"Unknown model tier: {name}") from None
