"""
Integration tests for end-to-end scans.

Tests warm-run idempotence, cache invalidation and non-fatal cache writes.
"""

import json
import os
from unittest.mock import patch

from conftest import make_entry, write_log
from usage_index.core.records import FORMAT_VERSION
from usage_index.core.scanner import scan_usage
from usage_index.storage.repository import CacheRepository


def _populate(log_root):
    write_log(str(log_root / "p1" / "s1.jsonl"), [
        make_entry(message_id="m1", input_tokens=100),
        make_entry(message_id="m2", input_tokens=5),
    ])
    write_log(str(log_root / "p2" / "s2.jsonl"), [
        make_entry(message_id="m1", input_tokens=200),
    ])


class TestScanUsage:
    """Test full scan runs against a real log tree."""

    def test_cold_run_parses_and_saves(self, log_root, cache_dir):
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))

        result = scan_usage(str(log_root), repository, "UTC")

        assert not result.cache_valid
        assert result.discovery.full_walk
        assert result.reconcile.misses == 2
        assert result.records["m1:req_1"].input_tokens == 200
        assert len(result.records) == 2
        assert result.saved
        assert repository.cache_path.exists()

    def test_second_run_is_all_hits(self, log_root, cache_dir):
        """Two runs without changes give identical records and no misses."""
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))

        first = scan_usage(str(log_root), repository, "UTC")
        second = scan_usage(str(log_root), repository, "UTC")

        assert second.cache_valid
        assert second.records == first.records
        assert second.reconcile.misses == 0
        assert second.reconcile.hits == 2
        assert not second.discovery.full_walk
        assert second.discovery.subtrees_walked == 0
        assert not second.saved

    def test_modified_file_is_reparsed_alone(self, log_root, cache_dir):
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))
        scan_usage(str(log_root), repository, "UTC")

        path = str(log_root / "p2" / "s2.jsonl")
        write_log(path, [
            make_entry(message_id="m1", input_tokens=200),
            make_entry(message_id="m3", input_tokens=1),
        ])
        result = scan_usage(str(log_root), repository, "UTC")

        assert result.reconcile.hits == 1
        assert result.reconcile.misses == 1
        assert "m3:req_1" in result.records
        assert result.saved

    def test_timezone_change_forces_rebuild(self, log_root, cache_dir):
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))
        scan_usage(str(log_root), repository, "UTC")

        result = scan_usage(str(log_root), repository, "CET")

        assert not result.cache_valid
        assert result.reconcile.hits == 0
        assert result.reconcile.misses == 2
        assert result.discovery.full_walk
        assert repository.load().timezone == "CET"

    def test_version_change_forces_rebuild(self, log_root, cache_dir):
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))
        scan_usage(str(log_root), repository, "UTC")

        with patch("usage_index.core.records.FORMAT_VERSION", FORMAT_VERSION + 1):
            result = scan_usage(str(log_root), repository, "UTC")

        assert not result.cache_valid
        assert result.reconcile.hits == 0

    def test_no_cache_skips_reading_but_writes(self, log_root, cache_dir):
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))
        scan_usage(str(log_root), repository, "UTC")

        result = scan_usage(str(log_root), repository, "UTC", use_cache=False)

        assert result.reconcile.hits == 0
        assert result.saved

    def test_clear_cache_rebuilds(self, log_root, cache_dir):
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))
        scan_usage(str(log_root), repository, "UTC")

        result = scan_usage(str(log_root), repository, "UTC", clear_cache=True)

        assert result.reconcile.misses == 2
        assert repository.cache_path.exists()

    def test_deleted_file_marks_cache_dirty(self, log_root, cache_dir):
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))
        scan_usage(str(log_root), repository, "UTC")

        os.remove(log_root / "p2" / "s2.jsonl")
        result = scan_usage(str(log_root), repository, "UTC")

        assert result.records["m1:req_1"].input_tokens == 100
        assert result.saved
        assert str(log_root / "p2" / "s2.jsonl") not in repository.load().files

    def test_save_failure_still_returns_records(self, log_root, cache_dir):
        """A failed cache write is reported, not raised."""
        _populate(log_root)
        repository = CacheRepository(str(cache_dir))

        with patch.object(repository, "save", side_effect=OSError("read-only")):
            result = scan_usage(str(log_root), repository, "UTC")

        assert len(result.records) == 2
        assert not result.saved
        assert "read-only" in result.save_error

    def test_malformed_legacy_cache_triggers_rebuild(self, log_root, cache_dir):
        _populate(log_root)
        cache_dir.mkdir()
        repository = CacheRepository(str(cache_dir))
        repository.legacy_cache_path.write_text(json.dumps({
            "version": 2,
            "timezone": "UTC",
            "files": {},
            "dirs": {},
            "last_full_walk": 123,
        }))

        result = scan_usage(str(log_root), repository, "UTC")

        assert not result.cache_valid
        assert len(result.records) == 2
        assert result.saved
        assert not repository.legacy_cache_path.exists()
