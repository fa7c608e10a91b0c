"""
Usage records and cache data structures.

Defines the immutable usage record and the in-memory cache snapshot.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple

# Bumped whenever the persisted snapshot layout changes.
FORMAT_VERSION = 2


@dataclass(frozen=True)
class UsageRecord:
    """Token usage observed for one logical request.

    The same dedup key may appear on several lines or in several files
    (retries, streamed restatements); reconciliation keeps one of them.
    """
    key: str
    date: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_write_tokens: int
    cache_read_tokens: int

    @property
    def total_tokens(self) -> int:
        """Sum of all four token counters."""
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_write_tokens
            + self.cache_read_tokens
        )


@dataclass(frozen=True)
class FileCacheEntry:
    """Records parsed from one log file, valid while (mtime_ns, size) match."""
    mtime_ns: int
    size: int
    records: Tuple[UsageRecord, ...] = ()

    def matches(self, mtime_ns: int, size: int) -> bool:
        return self.mtime_ns == mtime_ns and self.size == size


@dataclass
class CacheSnapshot:
    """Root of the persisted cache.

    Loaded once per run, mutated in memory by discovery and
    reconciliation, and written back when dirty.
    """
    version: int = FORMAT_VERSION
    timezone: str = ""
    files: Dict[str, FileCacheEntry] = field(default_factory=dict)
    dirs: Dict[str, int] = field(default_factory=dict)
    last_full_walk: float = 0.0

    def is_valid_for(self, timezone: str) -> bool:
        """Whether this snapshot can be trusted for a run in ``timezone``."""
        return self.version == FORMAT_VERSION and self.timezone == timezone


class MergeOutcome(Enum):
    """Result of folding one record into a merged set."""
    NEW = "new"
    REPLACED = "replaced"
    KEPT = "kept"


def merge_record(merged: Dict[str, UsageRecord], record: UsageRecord) -> MergeOutcome:
    """Fold one record into ``merged`` keeping the largest observation.

    The record with the larger token total wins; on a tie the incumbent
    stays, so the outcome does not depend on arrival order.

    Args:
        merged: Records by dedup key, updated in place
        record: Candidate record

    Returns:
        NEW for an unseen key, REPLACED when the candidate won, KEPT otherwise
    """
    existing = merged.get(record.key)
    if existing is None:
        merged[record.key] = record
        return MergeOutcome.NEW
    if record.total_tokens > existing.total_tokens:
        merged[record.key] = record
        return MergeOutcome.REPLACED
    return MergeOutcome.KEPT
