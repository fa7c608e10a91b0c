"""
Cache reconciliation across log files.

Reuses cached records for unchanged files, re-parses changed files on a
bounded worker pool and merges everything into one deduplicated set.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Set

from .parser import parse_file
from .records import CacheSnapshot, FileCacheEntry, MergeOutcome, UsageRecord, merge_record

logger = logging.getLogger(__name__)


@dataclass
class ReconcileStats:
    """Cache and merge counters for one reconciliation pass."""
    hits: int = 0
    misses: int = 0
    lines_parsed: int = 0
    unique_records: int = 0
    conflicts: int = 0


@dataclass
class ReconcileResult:
    """Deduplicated records plus bookkeeping from a reconciliation pass."""
    records: Dict[str, UsageRecord] = field(default_factory=dict)
    stats: ReconcileStats = field(default_factory=ReconcileStats)
    dirty: bool = False


class _CacheMiss(NamedTuple):
    path: str
    mtime_ns: int
    size: int


def default_worker_count() -> int:
    """Number of concurrent parse tasks, one per available processor."""
    return os.cpu_count() or 1


def _fold(
    merged: Dict[str, UsageRecord],
    records: Iterable[UsageRecord],
    stats: ReconcileStats,
) -> None:
    for record in records:
        outcome = merge_record(merged, record)
        if outcome is MergeOutcome.NEW:
            stats.unique_records += 1
        elif outcome is MergeOutcome.REPLACED:
            stats.conflicts += 1


def reconcile(
    files: Sequence[str],
    snapshot: CacheSnapshot,
    cache_valid: bool = True,
    max_workers: Optional[int] = None,
) -> ReconcileResult:
    """Merge usage records from ``files`` using and refreshing ``snapshot``.

    Runs in three phases:

    1. Sequential scan: stat every file; an entry whose (mtime, size)
       still matches is merged straight from the cache, anything else is
       queued as a miss.
    2. Parallel parse: misses are parsed on a pool of at most
       ``max_workers`` threads. Tasks only read their own file and return
       data; they never touch ``snapshot``.
    3. Sequential merge: parse results are folded in submission order and
       their cache entries rewritten.

    Entries for files that are no longer present are dropped from the
    snapshot.

    Args:
        files: Log file paths, usually from discovery
        snapshot: Cache snapshot, updated in place
        cache_valid: False when the snapshot was absent or invalidated
        max_workers: Parse pool size (defaults to the processor count)

    Returns:
        ReconcileResult whose ``dirty`` flag tells whether the snapshot
        needs to be persisted
    """
    result = ReconcileResult(dirty=not cache_valid)
    stats = result.stats
    merged = result.records
    present: Set[str] = set()
    misses: List[_CacheMiss] = []

    for path in files:
        try:
            st = os.stat(path)
        except OSError:
            continue
        present.add(path)
        cached = snapshot.files.get(path)
        if cache_valid and cached is not None and cached.matches(st.st_mtime_ns, st.st_size):
            stats.hits += 1
            _fold(merged, cached.records, stats)
        else:
            stats.misses += 1
            misses.append(_CacheMiss(path, st.st_mtime_ns, st.st_size))

    if misses:
        result.dirty = True
        workers = max(1, min(max_workers or default_worker_count(), len(misses)))
        logger.debug("Parsing %d changed files with %d workers", len(misses), workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # map() yields in submission order regardless of completion order.
            parsed = list(executor.map(parse_file, [miss.path for miss in misses]))

        for miss, (records, file_stats) in zip(misses, parsed):
            stats.lines_parsed += file_stats.lines_read
            _fold(merged, records, stats)
            snapshot.files[miss.path] = FileCacheEntry(
                mtime_ns=miss.mtime_ns,
                size=miss.size,
                records=tuple(records),
            )

    for path in [p for p in snapshot.files if p not in present]:
        del snapshot.files[path]
        result.dirty = True

    return result
