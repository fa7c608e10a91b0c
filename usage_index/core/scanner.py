"""
End-to-end usage scan.

Loads the cache, discovers log files, reconciles records and persists the
refreshed cache when anything changed.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..storage.repository import CacheRepository
from .discovery import DiscoveryStats, discover
from .reconcile import ReconcileStats, reconcile
from .records import CacheSnapshot, UsageRecord

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Outcome of one scan."""
    records: Dict[str, UsageRecord]
    files: List[str]
    discovery: DiscoveryStats
    reconcile: ReconcileStats
    cache_valid: bool
    saved: bool = False
    save_error: Optional[str] = None
    timings: Dict[str, float] = field(default_factory=dict)


def scan_usage(
    root: str,
    repository: CacheRepository,
    timezone: str,
    use_cache: bool = True,
    clear_cache: bool = False,
    max_workers: Optional[int] = None,
) -> ScanResult:
    """Collect deduplicated usage records under ``root``.

    A loaded snapshot is only trusted when its format version and timezone
    match the current run; otherwise a fresh snapshot is started and every
    file is re-parsed. The snapshot is written back when reconciliation
    left it dirty or the directory manifest changed. A failed write is
    logged and reported on the result, never raised.

    Args:
        root: Directory holding the log tree
        repository: Cache storage
        timezone: Local timezone label for this run
        use_cache: Read the existing cache (it is written either way)
        clear_cache: Delete cache files before scanning
        max_workers: Parse pool size (defaults to the processor count)

    Returns:
        ScanResult with the records and discovery/reconcile statistics
    """
    if clear_cache:
        try:
            repository.clear()
        except OSError as e:
            logger.warning("Could not delete cache in %s: %s", repository.cache_dir, e)

    snapshot: Optional[CacheSnapshot] = None
    if use_cache and not clear_cache:
        snapshot = repository.load()
    cache_valid = snapshot is not None and snapshot.is_valid_for(timezone)
    if not cache_valid:
        if snapshot is not None:
            logger.info("Cache invalidated (version %s, timezone %r)", snapshot.version, snapshot.timezone)
        snapshot = CacheSnapshot(timezone=timezone)

    started = time.perf_counter()
    files, discovery_stats = discover(root, snapshot)
    discovered = time.perf_counter()
    outcome = reconcile(files, snapshot, cache_valid=cache_valid, max_workers=max_workers)
    reconciled = time.perf_counter()

    result = ScanResult(
        records=outcome.records,
        files=files,
        discovery=discovery_stats,
        reconcile=outcome.stats,
        cache_valid=cache_valid,
        timings={"discover": discovered - started, "reconcile": reconciled - discovered},
    )

    if outcome.dirty or discovery_stats.manifest_changed:
        try:
            repository.save(snapshot)
            result.saved = True
        except OSError as e:
            logger.warning("Could not write cache %s: %s", repository.cache_path, e)
            result.save_error = str(e)
        result.timings["save"] = time.perf_counter() - reconciled

    return result
