"""Three-way content merge of record sets.

Records are matched by ``id`` across base, local and remote, never by line
position, and reconciled field by field. The merge is a pure function of its
three inputs: no clock, no randomness, output sorted by id with fields in
canonical order.

Rules, in order:

1. A record only one side has (and base lacks) is an addition.
2. A record base has but either side lacks is a deletion. The deletion wins
   even over a modification or a tombstone on the other side, so replaying an
   older commit can never resurrect it.
3. A record both sides changed is reconciled per field. A value only one
   side changed is taken; ``updated_at`` takes the later value; ``labels``,
   ``dependencies`` and ``comments`` merge as sets; a tombstone beats a live
   record; ``closed`` beats an open-like status and carries its
   ``closed_at``/``close_reason``.
4. Any other field both sides changed to different values is a conflict.
   Fields in ``STRATEGY_FIELDS`` may instead be settled by the configured
   ``ConflictStrategy``; ``manual`` never settles anything.

Conflicts are collected across the whole set and raised together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Tuple, Union

from .config_schema import ConflictStrategy
from .errors import FieldConflict, InvalidRecordError, MergeConflictError
from .fs import atomic_write_bytes, read_bytes
from .records import (
    STATUS_CLOSED,
    Record,
    content_hash,
    is_open_like,
    is_tombstone,
    parse_record_set,
    serialize_record_set,
    validate_record,
)


# Human-authored scalar fields where a tie-break hint is acceptable. Status is
# eligible only when both sides moved between open-like states.
STRATEGY_FIELDS = frozenset({
    "title",
    "description",
    "design",
    "acceptance_criteria",
    "notes",
    "priority",
    "assignee",
    "owner",
    "estimated_minutes",
    "due_at",
    "defer_until",
    "external_ref",
})

# Fields with dedicated rules; everything else goes through _merge_scalar.
_SPECIAL_FIELDS = frozenset({
    "id",
    "content_hash",
    "status",
    "closed_at",
    "close_reason",
    "updated_at",
    "labels",
    "dependencies",
    "comments",
})


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING: Any = _Missing()

Content = Union[bytes, str, None]


@dataclass
class MergeResult:
    """Merged record set plus counts for logging."""

    content: bytes
    added: int = 0
    deleted: int = 0
    merged: int = 0
    unchanged: int = 0
    resolved: List[FieldConflict] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return self.added + self.merged + self.unchanged

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "deleted": self.deleted,
            "merged": self.merged,
            "unchanged": self.unchanged,
            "resolved_by_strategy": [c.describe() for c in self.resolved],
        }


def _parse_ts(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compare_timestamps(a: Any, b: Any) -> int:
    """-1/0/1 ordering of two timestamps; unparseable values compare as strings."""
    pa, pb = _parse_ts(a), _parse_ts(b)
    if pa is not None and pb is not None:
        return (pa > pb) - (pa < pb)
    sa, sb = str(a or ""), str(b or "")
    return (sa > sb) - (sa < sb)


def _latest(a: Any, b: Any) -> Any:
    if a is MISSING:
        return b
    if b is MISSING:
        return a
    return a if compare_timestamps(a, b) >= 0 else b


class _RecordMerger:
    def __init__(self, strategy: ConflictStrategy):
        self.strategy = strategy
        self.conflicts: List[FieldConflict] = []
        self.resolved: List[FieldConflict] = []

    # -- generic three-way on one value --------------------------------

    def _merge_scalar(self, rid: str, name: str, base: Mapping, local: Mapping,
                      remote: Mapping, *, eligible: bool = False) -> Any:
        b = base.get(name, MISSING)
        lv = local.get(name, MISSING)
        rv = remote.get(name, MISSING)
        if lv == rv:
            return lv
        if lv == b:
            return rv
        if rv == b:
            return lv
        conflict = FieldConflict(rid, name, _plain(b), _plain(lv), _plain(rv))
        if eligible:
            choice = self._apply_strategy(local, remote, lv, rv)
            if choice is not None:
                self.resolved.append(conflict)
                return choice[0]
        self.conflicts.append(conflict)
        return lv

    def _apply_strategy(self, local: Mapping, remote: Mapping, lv: Any, rv: Any) -> Optional[Tuple[Any]]:
        if self.strategy is ConflictStrategy.OURS:
            return (lv,)
        if self.strategy is ConflictStrategy.THEIRS:
            return (rv,)
        if self.strategy is ConflictStrategy.NEWEST:
            order = compare_timestamps(local.get("updated_at"), remote.get("updated_at"))
            if order > 0:
                return (lv,)
            if order < 0:
                return (rv,)
        return None

    # -- keyed collections ------------------------------------------------

    def _merge_keyed(self, rid: str, name: str, base: Mapping, local: Mapping,
                     remote: Mapping, key_fn: Callable[[Any], Hashable]) -> Any:
        b_raw = base.get(name, MISSING)
        l_raw = local.get(name, MISSING)
        r_raw = remote.get(name, MISSING)
        if l_raw == r_raw:
            return l_raw
        if l_raw == b_raw:
            return r_raw
        if r_raw == b_raw:
            return l_raw

        b_items = _index(b_raw, key_fn)
        l_items = _index(l_raw, key_fn)
        r_items = _index(r_raw, key_fn)

        merged: Dict[Hashable, Any] = {}
        for key in set(b_items) | set(l_items) | set(r_items):
            in_b, in_l, in_r = key in b_items, key in l_items, key in r_items
            if in_b and not (in_l and in_r):
                continue  # removed by at least one side
            lv = l_items.get(key, MISSING)
            rv = r_items.get(key, MISSING)
            bv = b_items.get(key, MISSING)
            if lv is MISSING:
                merged[key] = rv
            elif rv is MISSING or lv == rv or rv == bv:
                merged[key] = lv
            elif lv == bv:
                merged[key] = rv
            else:
                self.conflicts.append(
                    FieldConflict(rid, f"{name}[{_key_label(key)}]", _plain(bv), lv, rv)
                )
                merged[key] = lv

        return [merged[k] for k in sorted(merged, key=_sort_key)]

    # -- record level -----------------------------------------------------

    def merge(self, rid: str, base: Optional[Mapping], local: Mapping, remote: Mapping) -> Record:
        base = base or {}

        lt, rt = is_tombstone(local), is_tombstone(remote)
        if lt != rt:
            return _as_tombstone(local if lt else remote)
        if lt and rt:
            return _as_tombstone(_pick_tombstone(local, remote))

        result: Record = {"id": rid}

        status, status_source = self._merge_status(rid, base, local, remote)
        if status is not MISSING:
            result["status"] = status
        self._merge_close_fields(rid, result, base, local, remote, status, status_source)

        updated = _latest(local.get("updated_at", MISSING), remote.get("updated_at", MISSING))
        if updated is not MISSING:
            result["updated_at"] = updated

        for name, key_fn in (
            ("labels", _label_key),
            ("dependencies", _dependency_key),
            ("comments", _comment_key),
        ):
            value = self._merge_keyed(rid, name, base, local, remote, key_fn)
            if value is not MISSING:
                result[name] = value

        names = (set(base) | set(local) | set(remote)) - _SPECIAL_FIELDS
        for name in sorted(names):
            value = self._merge_scalar(
                rid, name, base, local, remote, eligible=name in STRATEGY_FIELDS
            )
            if value is not MISSING:
                result[name] = value

        if "content_hash" in local or "content_hash" in remote:
            result["content_hash"] = content_hash(result)
        return result

    def _merge_status(self, rid: str, base: Mapping, local: Mapping,
                      remote: Mapping) -> Tuple[Any, str]:
        b = base.get("status", MISSING)
        ls = local.get("status", MISSING)
        rs = remote.get("status", MISSING)
        if ls == rs:
            return ls, "both"
        if ls == b:
            return rs, "remote"
        if rs == b:
            return ls, "local"
        if ls == STATUS_CLOSED and rs != STATUS_CLOSED:
            return ls, "local"
        if rs == STATUS_CLOSED and ls != STATUS_CLOSED:
            return rs, "remote"
        eligible = is_open_like(ls) and is_open_like(rs)
        value = self._merge_scalar(rid, "status", base, local, remote, eligible=eligible)
        if value == ls:
            return value, "local"
        return value, "remote"

    def _merge_close_fields(self, rid: str, result: Record, base: Mapping, local: Mapping,
                            remote: Mapping, status: Any, source: str) -> None:
        names = ("closed_at", "close_reason")
        if source != "both":
            winner = local if source == "local" else remote
            for name in names:
                if name in winner:
                    result[name] = winner[name]
            return

        if status == STATUS_CLOSED:
            order = compare_timestamps(local.get("closed_at"), remote.get("closed_at"))
            if order != 0:
                winner = local if order > 0 else remote
                for name in names:
                    if name in winner:
                        result[name] = winner[name]
                return

        for name in names:
            value = self._merge_scalar(rid, name, base, local, remote)
            if value is not MISSING:
                result[name] = value


def _plain(value: Any) -> Any:
    return None if value is MISSING else value


def _index(raw: Any, key_fn: Callable[[Any], Hashable]) -> Dict[Hashable, Any]:
    if raw is MISSING or raw is None:
        return {}
    if not isinstance(raw, list):
        raw = [raw]
    return {key_fn(item): item for item in raw}


def _label_key(item: Any) -> Hashable:
    return str(item)


def _dependency_key(item: Any) -> Hashable:
    if isinstance(item, Mapping):
        return (str(item.get("depends_on_id", "")), str(item.get("type", "")))
    return (str(item), "")


def _comment_key(item: Any) -> Hashable:
    if isinstance(item, Mapping):
        return (str(item.get("author", "")), str(item.get("text", "")), str(item.get("created_at", "")))
    return (str(item), "", "")


def _key_label(key: Hashable) -> str:
    if isinstance(key, tuple):
        return ":".join(part for part in key if part)
    return str(key)


def _sort_key(key: Hashable) -> Tuple:
    return key if isinstance(key, tuple) else (key,)


def _pick_tombstone(local: Mapping, remote: Mapping) -> Mapping:
    order = compare_timestamps(local.get("deleted_at"), remote.get("deleted_at"))
    if order > 0:
        return local
    if order < 0:
        return remote
    # same deletion time: any deterministic choice keeps the merge symmetric
    return max(local, remote, key=lambda r: serialize_record_set([r]))


def _as_tombstone(record: Mapping) -> Record:
    result = dict(record)
    if "original_type" not in result and "issue_type" in result:
        result["original_type"] = result["issue_type"]
    return result


def _coerce_strategy(strategy: Union[ConflictStrategy, str, None]) -> ConflictStrategy:
    if strategy is None:
        return ConflictStrategy.MANUAL
    if isinstance(strategy, ConflictStrategy):
        return strategy
    return ConflictStrategy(str(strategy).strip().lower())


def merge_record_sets(
    base: Content,
    local: Content,
    remote: Content,
    *,
    strategy: Union[ConflictStrategy, str, None] = ConflictStrategy.MANUAL,
) -> MergeResult:
    """Merge three JSONL snapshots of the record set.

    ``base`` may be None or empty when the histories share no ancestor.

    Raises:
        RecordParseError: An input line is not a JSON object with an id
        MergeConflictError: Fields changed to different values on both sides
        InvalidRecordError: A reconciled record breaks a lifecycle invariant
    """
    merger = _RecordMerger(_coerce_strategy(strategy))
    b = parse_record_set(base or b"", source="base")
    lc = parse_record_set(local or b"", source="local")
    rm = parse_record_set(remote or b"", source="remote")

    out: Dict[str, Record] = {}
    result = MergeResult(content=b"")
    problems: List[str] = []

    for rid in sorted(set(b) | set(lc) | set(rm)):
        in_b, in_l, in_r = rid in b, rid in lc, rid in rm

        if not in_b:
            if in_l and in_r:
                if lc[rid] == rm[rid]:
                    out[rid] = lc[rid]
                else:
                    out[rid] = merger.merge(rid, None, lc[rid], rm[rid])
                    problems.extend(validate_record(out[rid]))
            else:
                out[rid] = lc[rid] if in_l else rm[rid]
            result.added += 1
            continue

        if not (in_l and in_r):
            result.deleted += 1
            continue

        bv, lv, rv = b[rid], lc[rid], rm[rid]
        if lv == rv:
            out[rid] = lv
            if lv == bv:
                result.unchanged += 1
            else:
                result.merged += 1
        elif lv == bv:
            out[rid] = rv
            result.merged += 1
        elif rv == bv:
            out[rid] = lv
            result.merged += 1
        else:
            out[rid] = merger.merge(rid, bv, lv, rv)
            problems.extend(validate_record(out[rid]))
            result.merged += 1

    if merger.conflicts:
        raise MergeConflictError(merger.conflicts)
    if problems:
        raise InvalidRecordError(problems)

    result.content = serialize_record_set(out)
    result.resolved = merger.resolved
    return result


def merge_files(
    output: Path,
    base: Path,
    local: Path,
    remote: Path,
    *,
    strategy: Union[ConflictStrategy, str, None] = ConflictStrategy.MANUAL,
) -> MergeResult:
    """Merge three record-set files and write the result to ``output``.

    Shaped for use as a git merge driver, called as ``merge_files(%A, %O, %A, %B)``: missing inputs
    read as empty sets and ``output`` is only replaced on success.
    """
    result = merge_record_sets(
        read_bytes(base), read_bytes(local), read_bytes(remote), strategy=strategy
    )
    atomic_write_bytes(Path(output), result.content)
    return result
