"""
Repository for the persisted cache.

Handles cache file locations, loading with legacy migration, and
atomic writes.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from ..core.records import CacheSnapshot
from .codec import CacheFormatError, decode, decode_legacy, encode, upgrade_legacy_snapshot

logger = logging.getLogger(__name__)

CACHE_FILENAME = "cache.bin"
LEGACY_CACHE_FILENAME = "cache.json"


class CacheRepository:
    """Reads and writes the cache snapshot under one cache directory.

    The current binary cache lives in ``cache.bin``; an older plain JSON
    cache may still exist as ``cache.json`` and is migrated on load.
    """

    def __init__(self, cache_dir: str):
        """Initialize the repository with a cache directory.

        Args:
            cache_dir: Directory holding the cache files
        """
        self.cache_dir = Path(cache_dir)

    @property
    def cache_path(self) -> Path:
        return self.cache_dir / CACHE_FILENAME

    @property
    def legacy_cache_path(self) -> Path:
        return self.cache_dir / LEGACY_CACHE_FILENAME

    def load(self) -> Optional[CacheSnapshot]:
        """Load the cache snapshot, falling back to the legacy file.

        An unreadable or undecodable cache is never fatal: it is logged and
        None is returned so the caller rebuilds from scratch.

        Returns:
            The snapshot, or None when no usable cache exists
        """
        try:
            data = self.cache_path.read_bytes()
        except FileNotFoundError:
            return self._load_legacy()
        except OSError as e:
            logger.warning("Could not read cache %s: %s", self.cache_path, e)
            return None

        try:
            return decode(data)
        except CacheFormatError as e:
            logger.info("Discarding cache %s: %s", self.cache_path, e)
            return None

    def _load_legacy(self) -> Optional[CacheSnapshot]:
        try:
            data = self.legacy_cache_path.read_bytes()
        except OSError:
            return None
        try:
            snapshot = upgrade_legacy_snapshot(decode_legacy(data))
        except CacheFormatError as e:
            logger.info("Discarding legacy cache %s: %s", self.legacy_cache_path, e)
            return None
        logger.info("Migrated legacy cache %s", self.legacy_cache_path)
        return snapshot

    def save(self, snapshot: CacheSnapshot) -> None:
        """Atomically write the snapshot, then drop any legacy cache.

        The snapshot is written to a temporary file in the cache directory
        and renamed over ``cache.bin``. The legacy file is only removed once
        the rename succeeded.

        Args:
            snapshot: Snapshot to persist

        Raises:
            OSError: If the cache directory or file cannot be written
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        data = encode(snapshot)
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, self.cache_path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        try:
            self.legacy_cache_path.unlink()
        except FileNotFoundError:
            pass

    def clear(self) -> None:
        """Delete both the current and the legacy cache files."""
        for path in (self.cache_path, self.legacy_cache_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
