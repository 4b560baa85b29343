"""issuesync: replicate an issue record set between collaborators through git."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("issuesync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .gitcontext import RepoContext  # noqa: F401
from .lock import AdvisoryLock  # noqa: F401
from .merge import MergeResult, merge_record_sets  # noqa: F401
from .sync_branch import (  # noqa: F401
    CommitResult,
    PullResult,
    PushOutcome,
    SyncBranchManager,
    SyncStatus,
)

__all__ = [
    "AdvisoryLock",
    "CommitResult",
    "MergeResult",
    "PullResult",
    "PushOutcome",
    "RepoContext",
    "SyncBranchManager",
    "SyncStatus",
    "merge_record_sets",
    "__version__",
]
