"""Exception taxonomy for issuesync.

Transient failures (network, timeouts) are retried by the push loop and only
surface once retries are exhausted. Structural failures (conflicting edits,
corrupt records) are never retried. Environment failures carry guidance the
CLI prints verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List


class SyncError(Exception):
    """Base exception for sync-branch operations."""
    pass


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------


class TransientGitError(SyncError):
    """A git call failed for a reason that may go away on retry."""
    pass


class GitPullError(TransientGitError):
    """Failed to fetch the sync branch from the remote."""
    pass


class GitPushError(TransientGitError):
    """Failed to push the sync branch after exhausting retries."""
    pass


class OperationCancelledError(SyncError):
    """The caller cancelled the operation or its deadline passed."""
    pass


# ---------------------------------------------------------------------------
# Structural
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldConflict:
    """One field changed to two different values on both sides."""
    record_id: str
    field: str
    base: Any
    local: Any
    remote: Any

    def describe(self) -> str:
        return (
            f"{self.record_id}.{self.field}: base={self.base!r} "
            f"local={self.local!r} remote={self.remote!r}"
        )


class MergeError(SyncError):
    """Content merge could not produce a result."""
    pass


class RecordParseError(MergeError):
    """A record-set line is not a JSON object with an id."""

    def __init__(self, message: str, *, source: str = "", line: int = 0):
        self.source = source
        self.line = line
        location = f"{source}:{line}: " if source else (f"line {line}: " if line else "")
        super().__init__(f"{location}{message}")


class InvalidRecordError(MergeError):
    """A merged record violates a lifecycle invariant."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("invalid merged records:\n  " + "\n  ".join(self.problems))


class MergeConflictError(MergeError):
    """Both sides changed the same field to different values."""

    def __init__(self, conflicts: List[FieldConflict]):
        self.conflicts = list(conflicts)
        record_ids = sorted({c.record_id for c in self.conflicts})
        lines = [c.describe() for c in self.conflicts]
        super().__init__(
            f"merge completed with {len(self.conflicts)} conflict(s) in "
            f"{len(record_ids)} record(s) (manual resolution required):\n  "
            + "\n  ".join(lines)
        )

    @property
    def record_ids(self) -> List[str]:
        return sorted({c.record_id for c in self.conflicts})


class DivergenceRecoveryError(SyncError):
    """Local and remote histories could not be reconciled by the content merge."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


class BranchMergeError(SyncError):
    """``git merge`` of the sync branch into the current branch failed."""
    pass


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


class SyncEnvironmentError(SyncError):
    """The repository is not in a state the sync engine can work with."""
    pass


class NotAGitRepositoryError(SyncEnvironmentError):
    """The path is not inside a git repository."""
    pass


class RemoteNotConfiguredError(SyncEnvironmentError):
    """The sync branch has no usable remote."""
    pass


class WorktreeError(SyncEnvironmentError):
    """The sync worktree could not be created or repaired."""
    pass


class SameBranchError(SyncEnvironmentError):
    """The sync branch is the branch currently checked out.

    Git refuses to check out one branch in two worktrees, so the caller has
    to commit directly on the current checkout instead.
    """

    def __init__(self, branch: str):
        self.branch = branch
        super().__init__(
            f"sync branch '{branch}' is the branch currently checked out; "
            "a worktree cannot be created for it.\n"
            "Commit directly instead of via worktree "
            "(issuesync commit --in-place), or configure a different sync.branch."
        )
