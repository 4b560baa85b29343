"""Pending sync conflicts persisted between runs.

When a pull or push stops on conflicting edits, the conflicting fields and
the three commits involved are written to ``<data_dir>/sync_conflicts.json``
in the primary checkout. ``issuesync resolve --strategy ...`` later picks a
winning side per record and finishes the merge from those same commits.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .config_schema import ConflictStrategy
from .errors import FieldConflict, MergeConflictError
from .fs import atomic_write_bytes, utcnow_iso
from .merge import MergeResult, compare_timestamps, merge_record_sets
from .observability import log_warning
from .records import parse_record_set, serialize_record_set


CONFLICT_STATE_FILE = "sync_conflicts.json"

WINNER_LOCAL = "local"
WINNER_REMOTE = "remote"


@dataclass
class ConflictRecord:
    """One conflicting field of one record."""

    record_id: str
    field: str
    reason: str
    local_version: Any = None
    remote_version: Any = None

    @classmethod
    def from_field_conflict(cls, conflict: FieldConflict) -> "ConflictRecord":
        return cls(
            record_id=conflict.record_id,
            field=conflict.field,
            reason=conflict.describe(),
            local_version=conflict.local,
            remote_version=conflict.remote,
        )


@dataclass
class ConflictState:
    """Conflicts left behind by the last pull or push, plus the commits to redo the merge from."""

    branch: str = ""
    operation: str = ""
    detected_at: str = ""
    base_commit: Optional[str] = None
    local_commit: Optional[str] = None
    remote_commit: Optional[str] = None
    conflicts: List[ConflictRecord] = field(default_factory=list)

    @property
    def record_ids(self) -> List[str]:
        return sorted({c.record_id for c in self.conflicts})

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ConflictState":
        return cls(
            branch=data.get("branch", ""),
            operation=data.get("operation", ""),
            detected_at=data.get("detected_at", ""),
            base_commit=data.get("base_commit"),
            local_commit=data.get("local_commit"),
            remote_commit=data.get("remote_commit"),
            conflicts=[ConflictRecord(**c) for c in data.get("conflicts", [])],
        )

    @classmethod
    def from_error(cls, error: MergeConflictError, *, branch: str, operation: str,
                   base_commit: Optional[str], local_commit: Optional[str],
                   remote_commit: Optional[str]) -> "ConflictState":
        return cls(
            branch=branch,
            operation=operation,
            detected_at=utcnow_iso(),
            base_commit=base_commit,
            local_commit=local_commit,
            remote_commit=remote_commit,
            conflicts=[ConflictRecord.from_field_conflict(c) for c in error.conflicts],
        )


def conflict_state_path(data_dir: Path) -> Path:
    return Path(data_dir) / CONFLICT_STATE_FILE


def load_conflict_state(data_dir: Path) -> ConflictState:
    """Read the pending conflicts; an empty state when there are none.

    A corrupted file is reported and treated as empty.
    """
    path = conflict_state_path(data_dir)
    if not path.exists():
        return ConflictState()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ConflictState.from_dict(data)
    except json.JSONDecodeError as exc:
        log_warning("corrupted conflict state, ignoring", path=str(path), error=str(exc))
    except (AttributeError, KeyError, TypeError) as exc:
        log_warning("invalid conflict state structure, ignoring", path=str(path), error=str(exc))
    return ConflictState()


def save_conflict_state(data_dir: Path, state: ConflictState) -> Path:
    path = conflict_state_path(data_dir)
    payload = json.dumps(state.to_dict(), indent=2, ensure_ascii=False) + "\n"
    atomic_write_bytes(path, payload.encode("utf-8"))
    return path


def clear_conflict_state(data_dir: Path) -> bool:
    """Remove the state file. True when there was one."""
    path = conflict_state_path(data_dir)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def pick_winner(local: Optional[Mapping[str, Any]], remote: Optional[Mapping[str, Any]],
                strategy: ConflictStrategy) -> str:
    """Which side keeps a conflicting record.

    ``newest`` compares ``updated_at`` and keeps the remote on a tie, so two
    replicas resolving the same state pick the same record.
    """
    if strategy is ConflictStrategy.OURS:
        return WINNER_LOCAL
    if strategy is ConflictStrategy.THEIRS:
        return WINNER_REMOTE
    if local is None:
        return WINNER_REMOTE
    if remote is None:
        return WINNER_LOCAL
    if compare_timestamps(local.get("updated_at"), remote.get("updated_at")) > 0:
        return WINNER_LOCAL
    return WINNER_REMOTE


def resolve_conflicts(
    base: Union[bytes, str, None],
    local: Union[bytes, str, None],
    remote: Union[bytes, str, None],
    record_ids: List[str],
    strategy: Union[ConflictStrategy, str],
) -> Tuple[MergeResult, Dict[str, str]]:
    """Merge again after settling ``record_ids`` wholesale by ``strategy``.

    The winning record replaces the losing one on both sides, so those
    records merge cleanly; every other record goes through the normal merge.
    Returns the merge result and ``{record_id: "local" | "remote"}``.

    Raises:
        ValueError: ``strategy`` is ``manual``
        MergeConflictError: Records outside ``record_ids`` still conflict
    """
    strategy = ConflictStrategy(strategy)
    if strategy is ConflictStrategy.MANUAL:
        raise ValueError("the manual strategy cannot resolve conflicts; choose ours, theirs or newest")

    local_set = parse_record_set(local or b"", source="local")
    remote_set = parse_record_set(remote or b"", source="remote")
    winners: Dict[str, str] = {}
    for rid in record_ids:
        lv, rv = local_set.get(rid), remote_set.get(rid)
        if lv is None and rv is None:
            continue
        winner = pick_winner(lv, rv, strategy)
        winners[rid] = winner
        chosen = lv if winner == WINNER_LOCAL else rv
        if chosen is None:
            local_set.pop(rid, None)
            remote_set.pop(rid, None)
        else:
            local_set[rid] = chosen
            remote_set[rid] = chosen

    result = merge_record_sets(
        base,
        serialize_record_set(local_set),
        serialize_record_set(remote_set),
        strategy=strategy,
    )
    return result, winners
