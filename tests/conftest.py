"""
Shared fixtures for log tree tests.
"""

import json
import os
from datetime import datetime, timezone

import pytest


def make_entry(
    message_id="msg_1",
    request_id="req_1",
    input_tokens=10,
    output_tokens=5,
    cache_write=0,
    cache_read=0,
    timestamp="2025-01-01T12:00:00Z",
    model="claude-sonnet-4-20250514",
):
    """Build one log line as the agent writes it."""
    entry = {
        "timestamp": timestamp,
        "message": {
            "model": model,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": cache_write,
                "cache_read_input_tokens": cache_read,
            },
        },
    }
    if message_id is not None:
        entry["message"]["id"] = message_id
    if request_id is not None:
        entry["requestId"] = request_id
    return entry


def local_date(timestamp):
    """Local calendar date of an RFC3339 UTC timestamp."""
    moment = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    return moment.astimezone().strftime("%Y-%m-%d")


def write_log(path, entries, mtime_ns=None):
    """Write entries (dicts or raw strings) as a JSONL file."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            line = entry if isinstance(entry, str) else json.dumps(entry)
            f.write(line + "\n")
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return str(path)


@pytest.fixture
def log_root(tmp_path):
    """Empty log root directory."""
    root = tmp_path / "projects"
    root.mkdir()
    return root


@pytest.fixture
def cache_dir(tmp_path):
    """Directory for cache files."""
    return tmp_path / "cache"
