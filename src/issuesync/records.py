"""Record set (JSONL) model: parsing, canonical serialization, invariants."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional

from jsonschema import Draft7Validator

from .errors import RecordParseError


Record = Dict[str, Any]
RecordSet = Dict[str, Record]

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_BLOCKED = "blocked"
STATUS_DEFERRED = "deferred"
STATUS_PINNED = "pinned"
STATUS_HOOKED = "hooked"
STATUS_CLOSED = "closed"
STATUS_TOMBSTONE = "tombstone"

OPEN_LIKE_STATUSES = frozenset({
    STATUS_OPEN,
    STATUS_IN_PROGRESS,
    STATUS_BLOCKED,
    STATUS_DEFERRED,
    STATUS_PINNED,
    STATUS_HOOKED,
})
ALL_STATUSES = OPEN_LIKE_STATUSES | {STATUS_CLOSED, STATUS_TOMBSTONE}

# Serialization order; fields not listed follow in sorted order.
CANONICAL_FIELDS = (
    "id",
    "content_hash",
    "title",
    "description",
    "design",
    "acceptance_criteria",
    "notes",
    "status",
    "priority",
    "issue_type",
    "assignee",
    "owner",
    "estimated_minutes",
    "created_at",
    "created_by",
    "updated_at",
    "closed_at",
    "close_reason",
    "due_at",
    "defer_until",
    "external_ref",
    "labels",
    "dependencies",
    "comments",
    "deleted_at",
    "deleted_by",
    "delete_reason",
    "original_type",
)
_FIELD_RANK = {name: i for i, name in enumerate(CANONICAL_FIELDS)}

# Fields that make up the content hash. ID and timestamps are excluded.
HASHED_FIELDS = (
    "title",
    "description",
    "design",
    "acceptance_criteria",
    "notes",
    "status",
    "priority",
    "issue_type",
    "assignee",
    "owner",
    "created_by",
    "external_ref",
    "labels",
    "dependencies",
)

_TIMESTAMP = {"type": ["string", "null"]}
_TEXT = {"type": ["string", "null"]}

# Shape of one record. Unknown fields are allowed; the exporter owns them.
RECORD_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "issue record",
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "content_hash": {"type": "string"},
        "title": _TEXT,
        "description": _TEXT,
        "design": _TEXT,
        "acceptance_criteria": _TEXT,
        "notes": _TEXT,
        "status": {"type": "string"},
        "priority": {"type": ["integer", "null"]},
        "issue_type": _TEXT,
        "assignee": _TEXT,
        "owner": _TEXT,
        "estimated_minutes": {"type": ["integer", "null"]},
        "created_at": _TIMESTAMP,
        "updated_at": _TIMESTAMP,
        "closed_at": _TIMESTAMP,
        "deleted_at": _TIMESTAMP,
        "due_at": _TIMESTAMP,
        "defer_until": _TIMESTAMP,
        "labels": {"type": "array", "items": {"type": "string"}},
        "dependencies": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["depends_on_id"],
                "properties": {
                    "depends_on_id": {"type": "string"},
                    "type": {"type": "string"},
                },
            },
        },
        "comments": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "author": _TEXT,
                    "text": _TEXT,
                    "created_at": _TIMESTAMP,
                },
            },
        },
    },
}
_RECORD_VALIDATOR = Draft7Validator(RECORD_SCHEMA)


def is_open_like(status: Optional[str]) -> bool:
    return status in OPEN_LIKE_STATUSES


def is_tombstone(record: Mapping[str, Any]) -> bool:
    return record.get("status") == STATUS_TOMBSTONE


def parse_record_set(data: bytes | str, *, source: str = "") -> RecordSet:
    """Parse JSONL content into ``{id: record}``.

    Blank lines are skipped. When an ID appears twice the later line wins,
    matching how an import applies records in file order.

    Raises:
        RecordParseError: On a line that is not a JSON object with a string id
    """
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RecordParseError(f"not valid UTF-8: {exc}", source=source) from exc
    else:
        text = data

    records: RecordSet = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid JSON: {exc.msg}", source=source, line=lineno) from exc
        if not isinstance(obj, dict):
            raise RecordParseError("record is not a JSON object", source=source, line=lineno)
        record_id = obj.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise RecordParseError("record has no id", source=source, line=lineno)
        records[record_id] = obj
    return records


def canonical_record(record: Mapping[str, Any]) -> Record:
    """Copy of ``record`` with keys in canonical order."""
    keys = sorted(record, key=lambda k: (_FIELD_RANK.get(k, len(_FIELD_RANK)), k))
    return {k: record[k] for k in keys}


def serialize_record(record: Mapping[str, Any]) -> str:
    return json.dumps(canonical_record(record), ensure_ascii=False, separators=(",", ":"))


def serialize_record_set(records: Mapping[str, Mapping[str, Any]] | Iterable[Mapping[str, Any]]) -> bytes:
    """Canonical JSONL: sorted by id, compact JSON, trailing newline.

    The empty set serializes to empty bytes.
    """
    if isinstance(records, Mapping):
        values = list(records.values())
    else:
        values = list(records)
    if not values:
        return b""
    values.sort(key=lambda r: r["id"])
    return ("\n".join(serialize_record(r) for r in values) + "\n").encode("utf-8")


def count_records(data: bytes | str) -> int:
    """Number of non-blank lines. Closed and tombstoned records count as present."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", "replace")
    return sum(1 for line in data.splitlines() if line.strip())


def titles_by_id(data: bytes | str) -> Dict[str, str]:
    """Best-effort ``{id: title}`` map; malformed lines are skipped."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", "replace")
    result: Dict[str, str] = {}
    for line in data.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and isinstance(obj.get("id"), str) and obj["id"]:
            result[obj["id"]] = str(obj.get("title") or "")
    return result


def content_hash(record: Mapping[str, Any]) -> str:
    """SHA-256 over the semantic fields of ``record``.

    Two records that differ only in ID or timestamps hash the same, so a
    re-export that touched nothing but ``updated_at`` is recognizable as a
    no-op.
    """
    h = hashlib.sha256()
    for name in HASHED_FIELDS:
        value = record.get(name)
        if name == "labels" and isinstance(value, list):
            value = sorted(str(v) for v in value)
        elif name == "dependencies" and isinstance(value, list):
            value = sorted(
                (json.dumps(d, sort_keys=True, separators=(",", ":")) for d in value),
            )
        h.update(name.encode("utf-8"))
        h.update(b"\x00")
        h.update(json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()


def validate_record(record: Mapping[str, Any]) -> List[str]:
    """Schema and lifecycle invariant violations for one record (empty when valid)."""
    problems: List[str] = []
    rid = record.get("id", "?")
    errors = sorted(_RECORD_VALIDATOR.iter_errors(dict(record)),
                    key=lambda e: [str(p) for p in e.absolute_path])
    for error in errors:
        where = ".".join(str(p) for p in error.absolute_path) or "record"
        problems.append(f"{rid}: {where}: {error.message}")

    status = record.get("status")
    has_closed_at = bool(record.get("closed_at"))
    has_deleted_at = bool(record.get("deleted_at"))

    if status is not None and status not in ALL_STATUSES:
        problems.append(f"{rid}: unknown status {status!r}")
    if status == STATUS_CLOSED and not has_closed_at:
        problems.append(f"{rid}: status is closed but closed_at is missing")
    if status != STATUS_CLOSED and status != STATUS_TOMBSTONE and has_closed_at:
        problems.append(f"{rid}: closed_at is set but status is {status!r}")
    if status == STATUS_TOMBSTONE and not has_deleted_at:
        problems.append(f"{rid}: status is tombstone but deleted_at is missing")
    if status != STATUS_TOMBSTONE and has_deleted_at:
        problems.append(f"{rid}: deleted_at is set but status is {status!r}")
    return problems


def validate_record_set(records: Mapping[str, Mapping[str, Any]]) -> List[str]:
    problems: List[str] = []
    for record_id in sorted(records):
        problems.extend(validate_record(records[record_id]))
    return problems
