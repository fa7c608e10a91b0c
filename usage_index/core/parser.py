"""
Per-file log parsing.

Streams one JSONL log file and extracts usage records from it.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .records import UsageRecord

logger = logging.getLogger(__name__)

UNKNOWN_MODEL = "unknown"

# Seconds with an optional fraction of any length, before the offset.
_FRACTION = re.compile(r"(:\d{2})\.(\d+)")


@dataclass(frozen=True)
class FileStats:
    """Line counters for one parsed file."""
    lines_read: int = 0
    lines_parsed: int = 0
    entries_new: int = 0


def normalize_fraction(value: str) -> str:
    """Rewrite an RFC3339 timestamp into a form ``fromisoformat`` accepts.

    A trailing ``Z`` becomes ``+00:00`` and fractional seconds are padded or
    truncated to microseconds (logs carry anywhere from 1 to 9 digits).
    """
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    return _FRACTION.sub(
        lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", value, count=1
    )


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an RFC3339 timestamp; naive or malformed values yield None."""
    try:
        parsed = datetime.fromisoformat(normalize_fraction(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def _token_count(usage: Dict[str, Any], name: str) -> Optional[int]:
    value = usage.get(name, 0)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def parse_line(line: str) -> Optional[UsageRecord]:
    """Build a usage record from one log line.

    Returns None when the line is not a JSON object, carries no timestamp,
    has zero input and output tokens, or lacks the message id or request
    id needed for the dedup key.

    Raises:
        ValueError: If the line is not valid JSON
    """
    entry = json.loads(line)
    if not isinstance(entry, dict):
        return None
    message = entry.get("message") or {}
    if not isinstance(message, dict):
        return None
    usage = message.get("usage") or {}
    if not isinstance(usage, dict):
        return None

    counts = [
        _token_count(usage, "input_tokens"),
        _token_count(usage, "output_tokens"),
        _token_count(usage, "cache_creation_input_tokens"),
        _token_count(usage, "cache_read_input_tokens"),
    ]
    if any(count is None for count in counts):
        return None
    input_tokens, output_tokens, cache_write, cache_read = counts

    timestamp = entry.get("timestamp")
    if not isinstance(timestamp, str) or not timestamp:
        return None
    if input_tokens == 0 and output_tokens == 0:
        return None

    # Lines without both ids cannot be deduplicated safely.
    message_id = message.get("id")
    request_id = entry.get("requestId")
    if not isinstance(message_id, str) or not message_id:
        return None
    if not isinstance(request_id, str) or not request_id:
        return None

    moment = parse_timestamp(timestamp)
    if moment is None:
        return None

    model = message.get("model")
    if not isinstance(model, str) or not model:
        model = UNKNOWN_MODEL

    return UsageRecord(
        key=f"{message_id}:{request_id}",
        date=moment.astimezone().strftime("%Y-%m-%d"),
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_write_tokens=cache_write,
        cache_read_tokens=cache_read,
    )


def parse_file(path: str) -> Tuple[List[UsageRecord], FileStats]:
    """Parse a log file into records, first occurrence of each key wins.

    Cross-file precedence is decided later during reconciliation; within a
    single file only the earliest line for a dedup key is kept.

    Args:
        path: Path to a JSONL log file

    Returns:
        Records in first-seen order and line counters. An unreadable file
        yields no records.
    """
    records: Dict[str, UsageRecord] = {}
    lines_read = 0
    lines_parsed = 0

    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                lines_read += 1
                try:
                    record = parse_line(line)
                except ValueError:
                    continue
                lines_parsed += 1
                if record is None or record.key in records:
                    continue
                records[record.key] = record
    except OSError as e:
        logger.debug("Skipping unreadable log file %s: %s", path, e)
        return [], FileStats()

    stats = FileStats(
        lines_read=lines_read,
        lines_parsed=lines_parsed,
        entries_new=len(records),
    )
    return list(records.values()), stats
