"""
Unit tests for usage records and the merge rule.

Tests token totals, snapshot validity and largest-total-wins merging.
"""

import itertools

from usage_index.core.records import (
    FORMAT_VERSION,
    CacheSnapshot,
    FileCacheEntry,
    MergeOutcome,
    UsageRecord,
    merge_record,
)


def _record(key="K1:X", input_tokens=0, output_tokens=0, cache_write=0, cache_read=0, model="sonnet"):
    return UsageRecord(
        key=key,
        date="2025-01-01",
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_write_tokens=cache_write,
        cache_read_tokens=cache_read,
    )


class TestUsageRecord:
    """Test UsageRecord dataclass."""

    def test_total_tokens_sums_all_counters(self):
        """Verify total_tokens includes cache counters."""
        record = _record(input_tokens=10, output_tokens=20, cache_write=30, cache_read=40)
        assert record.total_tokens == 100

    def test_file_entry_matches_metadata(self):
        """Verify cache entries only match identical (mtime, size)."""
        entry = FileCacheEntry(mtime_ns=5, size=10)
        assert entry.matches(5, 10)
        assert not entry.matches(6, 10)
        assert not entry.matches(5, 11)


class TestSnapshotValidity:
    """Test snapshot version and timezone checks."""

    def test_matching_snapshot_is_valid(self):
        snapshot = CacheSnapshot(timezone="UTC")
        assert snapshot.is_valid_for("UTC")

    def test_timezone_mismatch_is_invalid(self):
        snapshot = CacheSnapshot(timezone="UTC")
        assert not snapshot.is_valid_for("CET")

    def test_version_mismatch_is_invalid(self):
        snapshot = CacheSnapshot(version=FORMAT_VERSION - 1, timezone="UTC")
        assert not snapshot.is_valid_for("UTC")


class TestMergeRecord:
    """Test largest-total-wins merging."""

    def test_new_key_is_added(self):
        merged = {}
        assert merge_record(merged, _record(input_tokens=1)) is MergeOutcome.NEW
        assert merged["K1:X"].input_tokens == 1

    def test_larger_total_replaces(self):
        merged = {}
        merge_record(merged, _record(input_tokens=100))
        outcome = merge_record(merged, _record(input_tokens=50, output_tokens=100))
        assert outcome is MergeOutcome.REPLACED
        assert merged["K1:X"].total_tokens == 150

    def test_smaller_or_equal_total_is_kept(self):
        merged = {}
        merge_record(merged, _record(input_tokens=100, model="first"))
        assert merge_record(merged, _record(input_tokens=90)) is MergeOutcome.KEPT
        assert merge_record(merged, _record(output_tokens=100)) is MergeOutcome.KEPT
        assert merged["K1:X"].model == "first"

    def test_winner_independent_of_order(self):
        """Every arrival order produces the same surviving record."""
        candidates = [
            _record(input_tokens=10),
            _record(output_tokens=300),
            _record(cache_read=120),
        ]
        for order in itertools.permutations(candidates):
            merged = {}
            for record in order:
                merge_record(merged, record)
            assert merged["K1:X"].output_tokens == 300
