"""Storage collaborator interface.

The sync engine never talks to the issue database directly. It reads the
current exported record set and hands back a merged one through this narrow
protocol; both calls are assumed idempotent and crash-safe.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from .fs import atomic_write_bytes, read_bytes
from .records import count_records, parse_record_set, serialize_record_set


@runtime_checkable
class RecordStore(Protocol):
    def get_record_set(self) -> bytes:
        """Serialized current state (JSONL) for export."""
        ...

    def replace_record_set(self, data: bytes) -> int:
        """Apply an imported/merged state. Returns the number of records."""
        ...


class JsonlFileStore:
    """Record store backed by a single JSONL file.

    Used when the record file itself is the source of truth (no database in
    front of it). Writes are validated and canonicalized before they land.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def get_record_set(self) -> bytes:
        return read_bytes(self.path)

    def replace_record_set(self, data: bytes) -> int:
        records = parse_record_set(data, source=str(self.path))
        content = serialize_record_set(records)
        if content != read_bytes(self.path):
            atomic_write_bytes(self.path, content)
        return count_records(content)
