"""
Binary cache codec.

Encodes the cache snapshot with a versioned header and a string-interned
payload, and upgrades the legacy JSON cache schema.
"""

import io
import json
import pickle
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..core.parser import normalize_fraction
from ..core.records import FORMAT_VERSION, CacheSnapshot, FileCacheEntry, UsageRecord

MAGIC = b"CCUG"
HEADER = struct.Struct("<4sI")
# Legacy JSON versions sharing the record layout below.
LEGACY_VERSIONS = (1, 2)

# Index 0 of the string table is reserved for the timezone label.
TIMEZONE_INDEX = 0


class CacheFormatError(Exception):
    """Raised when persisted cache bytes cannot be decoded."""


class _PlainUnpickler(pickle.Unpickler):
    """Unpickler restricted to built-in containers and scalars."""

    def find_class(self, module, name):
        raise pickle.UnpicklingError(f"Refusing to load {module}.{name} from cache")


class _StringTable:
    def __init__(self):
        self.strings: List[str] = []
        self._index: Dict[str, int] = {}

    def intern(self, value: str) -> int:
        idx = self._index.get(value)
        if idx is None:
            idx = len(self.strings)
            self.strings.append(value)
            self._index[value] = idx
        return idx


def encode(snapshot: CacheSnapshot) -> bytes:
    """Serialize a snapshot to the current binary format.

    Layout: 4-byte magic, little-endian uint32 format version, then a
    pickled payload of plain containers. Dates and model names are
    replaced by indices into a shared string table.

    Args:
        snapshot: Snapshot to encode

    Returns:
        Encoded bytes
    """
    table = _StringTable()
    table.intern(snapshot.timezone)

    files = {}
    for path, entry in snapshot.files.items():
        rows = [
            (
                record.key,
                table.intern(record.date),
                table.intern(record.model),
                record.input_tokens,
                record.output_tokens,
                record.cache_write_tokens,
                record.cache_read_tokens,
            )
            for record in entry.records
        ]
        files[path] = (entry.mtime_ns, entry.size, rows)

    payload = {
        "strings": table.strings,
        "files": files,
        "dirs": dict(snapshot.dirs),
        "last_full_walk": float(snapshot.last_full_walk),
    }
    return HEADER.pack(MAGIC, FORMAT_VERSION) + pickle.dumps(
        payload, protocol=pickle.HIGHEST_PROTOCOL
    )


def decode(data: bytes) -> CacheSnapshot:
    """Deserialize bytes written by :func:`encode`.

    Args:
        data: Encoded cache bytes

    Returns:
        The decoded snapshot

    Raises:
        CacheFormatError: If the magic, version or payload is invalid
    """
    if len(data) < HEADER.size:
        raise CacheFormatError("Cache file is truncated")
    magic, version = HEADER.unpack_from(data)
    if magic != MAGIC:
        raise CacheFormatError(f"Bad cache magic: {magic!r}")
    if version != FORMAT_VERSION:
        raise CacheFormatError(f"Unsupported cache version: {version}")

    try:
        payload = _PlainUnpickler(io.BytesIO(data[HEADER.size:])).load()
        return _snapshot_from_payload(payload, version)
    except CacheFormatError:
        raise
    except Exception as e:
        raise CacheFormatError(f"Corrupt cache payload: {e}") from e


def _snapshot_from_payload(payload: Any, version: int) -> CacheSnapshot:
    if not isinstance(payload, dict):
        raise CacheFormatError("Cache payload must be a mapping")
    strings = payload["strings"]
    if not isinstance(strings, list) or not all(isinstance(s, str) for s in strings):
        raise CacheFormatError("Cache string table is malformed")

    def lookup(idx: int) -> str:
        if not isinstance(idx, int) or not 0 <= idx < len(strings):
            raise CacheFormatError(f"String index out of range: {idx}")
        return strings[idx]

    files = {}
    for path, (mtime_ns, size, rows) in payload["files"].items():
        records = tuple(
            UsageRecord(
                key=key,
                date=lookup(date_idx),
                model=lookup(model_idx),
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cache_write_tokens=cache_write,
                cache_read_tokens=cache_read,
            )
            for key, date_idx, model_idx, input_tokens, output_tokens, cache_write, cache_read in rows
        )
        files[path] = FileCacheEntry(mtime_ns=int(mtime_ns), size=int(size), records=records)

    return CacheSnapshot(
        version=version,
        timezone=strings[TIMEZONE_INDEX] if strings else "",
        files=files,
        dirs={str(k): int(v) for k, v in payload["dirs"].items()},
        last_full_walk=float(payload["last_full_walk"]),
    )


@dataclass
class LegacySnapshot:
    """The plain JSON cache schema that predates the binary format."""
    version: int
    timezone: str
    files: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    dirs: Dict[str, int] = field(default_factory=dict)
    last_full_walk: str = ""


def decode_legacy(data: bytes) -> LegacySnapshot:
    """Parse the legacy JSON cache.

    Raises:
        CacheFormatError: If the document is not a legacy cache
    """
    try:
        raw = json.loads(data)
    except ValueError as e:
        raise CacheFormatError(f"Invalid legacy cache: {e}") from e
    if not isinstance(raw, dict):
        raise CacheFormatError("Legacy cache must be a JSON object")
    files = raw.get("files") or {}
    dirs = raw.get("dirs") or {}
    if not isinstance(files, dict) or not isinstance(dirs, dict):
        raise CacheFormatError("Legacy cache files/dirs must be objects")
    timezone_label = raw.get("timezone") or ""
    last_full_walk = raw.get("last_full_walk") or ""
    if not isinstance(timezone_label, str) or not isinstance(last_full_walk, str):
        raise CacheFormatError("Legacy cache timezone/last_full_walk must be strings")
    return LegacySnapshot(
        version=raw.get("version", 0),
        timezone=timezone_label,
        files=files,
        dirs=dirs,
        last_full_walk=last_full_walk,
    )


def _legacy_walk_time(value: str) -> float:
    if not value:
        return 0.0
    try:
        moment = datetime.fromisoformat(normalize_fraction(value))
    except ValueError:
        return 0.0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    # Zero time values (year 1) never count as a completed full walk.
    if moment.year < 1970:
        return 0.0
    return moment.timestamp()


def upgrade_legacy_snapshot(legacy: LegacySnapshot) -> CacheSnapshot:
    """Convert a legacy snapshot into the current in-memory form.

    The record layout is unchanged between the two schemas, so a legacy
    version 1 or 2 snapshot keeps its entries. Any other legacy version
    is rejected.

    Raises:
        CacheFormatError: If the legacy version or an entry is invalid
    """
    if legacy.version not in LEGACY_VERSIONS:
        raise CacheFormatError(f"Unsupported legacy cache version: {legacy.version}")

    files = {}
    try:
        for path, entry in legacy.files.items():
            records = tuple(
                UsageRecord(
                    key=str(raw["key"]),
                    date=str(raw["date"]),
                    model=str(raw["model"]),
                    input_tokens=int(raw.get("input_tokens", 0)),
                    output_tokens=int(raw.get("output_tokens", 0)),
                    cache_write_tokens=int(raw.get("cache_creation_tokens", 0)),
                    cache_read_tokens=int(raw.get("cache_read_tokens", 0)),
                )
                for raw in entry.get("entries") or []
            )
            files[path] = FileCacheEntry(
                mtime_ns=int(entry["mtime"]),
                size=int(entry["size"]),
                records=records,
            )
        dirs = {str(k): int(v) for k, v in legacy.dirs.items()}
        last_full_walk = _legacy_walk_time(legacy.last_full_walk)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CacheFormatError(f"Malformed legacy cache entry: {e}") from e

    return CacheSnapshot(
        version=FORMAT_VERSION,
        timezone=legacy.timezone,
        files=files,
        dirs=dirs,
        last_full_walk=last_full_walk,
    )
