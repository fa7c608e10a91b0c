"""
Aggregation of usage records.

Folds deduplicated records into a date by model matrix.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable

from .records import UsageRecord


@dataclass
class TokenTotals:
    """Summed token counters."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0

    def add(self, other: "TokenTotals") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_write_tokens += other.cache_write_tokens
        self.cache_read_tokens += other.cache_read_tokens

    def add_record(self, record: UsageRecord) -> None:
        self.input_tokens += record.input_tokens
        self.output_tokens += record.output_tokens
        self.cache_write_tokens += record.cache_write_tokens
        self.cache_read_tokens += record.cache_read_tokens


@dataclass
class DayUsage:
    """Token totals for one date, split by model."""
    models: Dict[str, TokenTotals] = field(default_factory=dict)

    def totals(self) -> TokenTotals:
        """Token totals across all models of the day."""
        total = TokenTotals()
        for usage in self.models.values():
            total.add(usage)
        return total


def aggregate_usage(records: Iterable[UsageRecord]) -> Dict[str, DayUsage]:
    """Group records by date and model.

    Args:
        records: Deduplicated usage records

    Returns:
        Mapping of ``YYYY-MM-DD`` date to that day's usage
    """
    days: Dict[str, DayUsage] = {}
    for record in records:
        day = days.setdefault(record.date, DayUsage())
        day.models.setdefault(record.model, TokenTotals()).add_record(record)
    return days
