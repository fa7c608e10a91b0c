"""
Pricing calculations and rate management.

Handles cost computations for Claude models from per-million-token rates.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from .aggregate import DayUsage, TokenTotals

DEFAULT_MODEL = "default"
TOKENS_PER_UNIT = Decimal("1000000")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input: Decimal  # USD per 1M input tokens
    output: Decimal  # USD per 1M output tokens
    cache_write: Decimal  # USD per 1M cache creation tokens
    cache_read: Decimal  # USD per 1M cache read tokens


@dataclass(frozen=True)
class PricingTable:
    """Pricing table with a ``default`` entry for unknown models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or the default pricing

        Raises:
            ValueError: If the model is unknown and there is no default
        """
        if model in self.prices:
            return self.prices[model]
        if DEFAULT_MODEL not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[DEFAULT_MODEL]


def _rates(input: str, output: str, cache_write: str, cache_read: str) -> ModelPricing:
    return ModelPricing(
        input=Decimal(input),
        output=Decimal(output),
        cache_write=Decimal(cache_write),
        cache_read=Decimal(cache_read),
    )


# Rates per million tokens, USD. See https://claude.com/pricing
DEFAULT_PRICING = PricingTable({
    DEFAULT_MODEL: _rates("3.00", "15.00", "3.75", "0.30"),
    "claude-opus-4-5-20251101": _rates("5.00", "25.00", "6.25", "0.50"),
    "claude-opus-4-1-20250805": _rates("15.00", "75.00", "18.75", "1.50"),
    "claude-sonnet-4-20250514": _rates("3.00", "15.00", "3.75", "0.30"),
    "claude-sonnet-4-5-20250514": _rates("3.00", "15.00", "3.75", "0.30"),
    "claude-sonnet-4-5-20250929": _rates("3.00", "15.00", "3.75", "0.30"),
    "claude-haiku-3-5-20241022": _rates("0.80", "4.00", "1.00", "0.08"),
    "claude-haiku-4-5-20251001": _rates("1.00", "5.00", "1.25", "0.10"),
    "haiku": _rates("1.00", "5.00", "1.25", "0.10"),
    "sonnet": _rates("3.00", "15.00", "3.75", "0.30"),
})


def calculate_cost(model: str, usage: TokenTotals, pricing: PricingTable) -> Decimal:
    """Calculate the unrounded cost of a model's token usage.

    Args:
        model: Model identifier
        usage: Token totals for the model
        pricing: Pricing table to look the model up in

    Returns:
        Cost in USD
    """
    rates = pricing.get_pricing(model)
    total = (
        Decimal(usage.input_tokens) * rates.input
        + Decimal(usage.output_tokens) * rates.output
        + Decimal(usage.cache_write_tokens) * rates.cache_write
        + Decimal(usage.cache_read_tokens) * rates.cache_read
    )
    return total / TOKENS_PER_UNIT


def calculate_day_cost(day: DayUsage, pricing: PricingTable) -> Decimal:
    """Sum model costs for one day."""
    return sum(
        (calculate_cost(model, usage, pricing) for model, usage in day.models.items()),
        Decimal("0"),
    )
