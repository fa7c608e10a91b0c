"""
Log file discovery with a directory manifest.

Tracks directory modification times so warm runs only re-walk the
subtrees whose entries were added or removed.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .records import CacheSnapshot

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".jsonl"

# Safety net for changes the manifest cannot see (renames, clock skew).
FULL_WALK_INTERVAL = 5 * 60


@dataclass
class DiscoveryStats:
    """Counters describing how files were discovered."""
    full_walk: bool = False
    dirs_checked: int = 0
    dirs_changed: int = 0
    subtrees_walked: int = 0
    files_from_cache: int = 0

    @property
    def manifest_changed(self) -> bool:
        return self.full_walk or self.dirs_changed > 0


def walk_tree(root: str) -> Tuple[List[str], Dict[str, int]]:
    """Recursively collect log files and directory mtimes under ``root``.

    Unreadable directories are skipped. A missing root yields nothing.

    Returns:
        Log file paths and a mapping of directory path to mtime in ns
    """
    files: List[str] = []
    dirs: Dict[str, int] = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        try:
            dirs[dirpath] = os.stat(dirpath).st_mtime_ns
        except OSError:
            continue
        for name in filenames:
            if name.endswith(LOG_SUFFIX):
                files.append(os.path.join(dirpath, name))
    return files, dirs


def minimal_roots(paths: Iterable[str]) -> List[str]:
    """Drop every path that is a descendant of another path in the set.

    Args:
        paths: Directory paths

    Returns:
        Sorted ancestor-only subset of ``paths``
    """
    roots: List[str] = []
    for path in sorted(set(paths)):
        if any(_is_within(path, root) for root in roots):
            continue
        roots.append(path)
    return roots


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _needs_full_walk(snapshot: Optional[CacheSnapshot], now: float) -> bool:
    if snapshot is None or not snapshot.dirs:
        return True
    return now - snapshot.last_full_walk > FULL_WALK_INTERVAL


def discover(
    root: str,
    snapshot: Optional[CacheSnapshot] = None,
    now: Optional[float] = None,
) -> Tuple[List[str], DiscoveryStats]:
    """Find log files under ``root``, reusing the snapshot's manifest.

    A full walk runs on a cold start (no snapshot or empty manifest) and
    whenever the last full walk is older than FULL_WALK_INTERVAL. Otherwise
    each manifested directory is stat'ed; changed or vanished directories
    are reduced to their minimal ancestors and only those subtrees are
    walked. Files under unchanged directories come straight from the
    snapshot's file entries without touching the filesystem.

    The snapshot's manifest (and last_full_walk after a full walk) is
    updated in place.

    Args:
        root: Directory holding the log tree
        snapshot: Cache snapshot whose manifest and file entries to use
        now: Current epoch time, for tests

    Returns:
        Sorted, deduplicated log file paths and discovery statistics
    """
    stats = DiscoveryStats()
    now = time.time() if now is None else now

    if _needs_full_walk(snapshot, now):
        stats.full_walk = True
        files, dirs = walk_tree(root)
        if snapshot is not None:
            snapshot.dirs = dirs
            snapshot.last_full_walk = now
        stats.dirs_checked = len(dirs)
        logger.debug("Full walk of %s: %d dirs, %d files", root, len(dirs), len(files))
        return sorted(set(files)), stats

    stats.dirs_checked = len(snapshot.dirs)
    changed: Set[str] = set()
    unchanged: Set[str] = set()
    for dir_path, cached_mtime in snapshot.dirs.items():
        try:
            current_mtime = os.stat(dir_path).st_mtime_ns
        except OSError:
            changed.add(dir_path)
            continue
        if current_mtime != cached_mtime:
            changed.add(dir_path)
        else:
            unchanged.add(dir_path)
    stats.dirs_changed = len(changed)

    subtrees = minimal_roots(changed)
    file_set: Set[str] = set()
    for file_path in snapshot.files:
        parent = os.path.dirname(file_path)
        if parent in unchanged and not any(_is_within(parent, s) for s in subtrees):
            file_set.add(file_path)
    stats.files_from_cache = len(file_set)

    for subtree in subtrees:
        stats.subtrees_walked += 1
        subtree_files, subtree_dirs = walk_tree(subtree)
        # Entries under a re-walked root are replaced wholesale, which also
        # prunes directories that no longer exist.
        for dir_path in [d for d in snapshot.dirs if _is_within(d, subtree)]:
            del snapshot.dirs[dir_path]
        snapshot.dirs.update(subtree_dirs)
        file_set.update(subtree_files)

    if changed:
        logger.debug(
            "Partial walk of %s: %d/%d dirs changed, %d subtrees walked",
            root, stats.dirs_changed, stats.dirs_checked, stats.subtrees_walked,
        )
    return sorted(file_set), stats
