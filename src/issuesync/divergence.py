"""Divergence between the local and remote tips of the sync branch."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from git import GitCommandError

from .transport import CancelToken, GitTransport


# More than this many commits on both sides and an automatic merge deserves a human look.
SIGNIFICANT_DIVERGENCE_THRESHOLD = 5


class SyncState(str, Enum):
    UP_TO_DATE = "up_to_date"
    FAST_FORWARD = "fast_forward"
    DIVERGED = "diverged"


def classify(local_ahead: int, remote_ahead: int) -> SyncState:
    """Relationship between local and remote tips.

    Local-only commits with nothing new on the remote is still up to date
    from the pull side; the push carries them out.
    """
    if remote_ahead <= 0:
        return SyncState.UP_TO_DATE
    if local_ahead <= 0:
        return SyncState.FAST_FORWARD
    return SyncState.DIVERGED


def is_significant(local_ahead: int, remote_ahead: int,
                   threshold: int = SIGNIFICANT_DIVERGENCE_THRESHOLD) -> bool:
    """True when both sides are strictly more than ``threshold`` commits ahead.

    Exactly ``threshold`` on a side is not significant.
    """
    return local_ahead > threshold and remote_ahead > threshold


def get_divergence(
    transport: GitTransport,
    worktree: Path,
    branch: str,
    remote: str,
    *,
    cancel: Optional[CancelToken] = None,
) -> Tuple[int, int]:
    """``(local_ahead, remote_ahead)`` for HEAD against ``<remote>/<branch>``.

    Run after a fetch. A remote branch that does not exist yet (first sync)
    is not an error: everything local counts as ahead and nothing as behind.
    """
    remote_ref = f"{remote}/{branch}"
    if not transport.remote_branch_exists(worktree, remote, branch, cancel=cancel):
        if transport.rev_parse(worktree, "HEAD", cancel=cancel) is None:
            return 0, 0
        return transport.rev_list_count(worktree, "HEAD", cancel=cancel), 0
    try:
        return transport.rev_list_counts(worktree, "HEAD", remote_ref, cancel=cancel)
    except GitCommandError:
        # unborn HEAD in a fresh worktree
        if transport.rev_parse(worktree, "HEAD", cancel=cancel) is None:
            return 0, transport.rev_list_count(worktree, remote_ref, cancel=cancel)
        raise


@dataclass
class DivergenceInfo:
    branch: str
    remote: str
    local_ahead: int = 0
    remote_ahead: int = 0
    worktree: Optional[str] = None

    @property
    def state(self) -> SyncState:
        return classify(self.local_ahead, self.remote_ahead)

    @property
    def is_diverged(self) -> bool:
        return self.local_ahead > 0 and self.remote_ahead > 0

    @property
    def is_significant(self) -> bool:
        return self.is_diverged and is_significant(self.local_ahead, self.remote_ahead)

    def recovery_guidance(self) -> str:
        """Multi-line remediation text for a significant divergence."""
        lines = [
            f"Sync branch '{self.branch}' has diverged from {self.remote}/{self.branch}:",
            f"  local is {self.local_ahead} commit(s) ahead, "
            f"remote is {self.remote_ahead} commit(s) ahead.",
            "",
            "Options:",
            "  1. Merge automatically (content-level, keeps both sides' records):",
            "       issuesync pull",
            "  2. Discard local sync commits and adopt the remote:",
            "       issuesync reset-remote",
            "  3. Overwrite the remote with the local branch:",
            "       issuesync force-push",
        ]
        if self.worktree:
            lines += [
                "  4. Resolve by hand in the sync worktree:",
                f"       cd {self.worktree}",
            ]
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(
            state=self.state.value,
            is_diverged=self.is_diverged,
            is_significant=self.is_significant,
        )
        return data
