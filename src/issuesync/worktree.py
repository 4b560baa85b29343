"""Isolated worktree for the sync branch.

The sync branch is checked out in a separate worktree under the shared git
directory so the user's own checkout is never touched. The worktree uses a
sparse checkout restricted to the data directory.

A worktree that fails the health check is removed and recreated, never
repaired in place. Git worktree corruption comes in too many shapes to
enumerate; recreation is the one strategy that always converges.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

from git import GitCommandError

from .errors import SameBranchError, WorktreeError
from .fs import copy_file_atomic
from .gitcontext import RepoContext
from .observability import log_action, log_debug, log_warning
from .transport import CancelToken, GitTransport, same_path, stderr_of


DEFAULT_REMOTE = "origin"
ROOT_COMMIT_MESSAGE = "issuesync: initialize sync branch"


class WorktreeManager:
    """Provision and health-check the sync-branch worktree.

    Args:
        context: Repository the worktree belongs to
        transport: Git operations
        data_dir: Directory (relative to the repo root) the sparse checkout keeps
        remote: Remote name override; otherwise ``branch.<name>.remote`` or origin
    """

    def __init__(
        self,
        context: RepoContext,
        transport: GitTransport,
        *,
        data_dir: str = ".issues",
        remote: Optional[str] = None,
    ):
        self.context = context
        self.transport = transport
        self.data_dir = data_dir.strip("/")
        self.remote_override = remote

    @property
    def _git_cwd(self) -> Path:
        return self.context.repo_root or self.context.common_dir

    @property
    def sparse_patterns(self) -> list[str]:
        return [f"/{self.data_dir}/"]

    def resolve_remote(self, branch: str, *, cancel: Optional[CancelToken] = None) -> str:
        if self.remote_override:
            return self.remote_override
        configured = self.transport.config_get(self._git_cwd, f"branch.{branch}.remote", cancel=cancel)
        return configured or DEFAULT_REMOTE

    def default_path(self, branch: str) -> Path:
        return self.context.worktree_path(branch)

    def check_same_branch(self, branch: str, *, cancel: Optional[CancelToken] = None) -> None:
        """Raise ``SameBranchError`` when ``branch`` is the primary checkout's branch."""
        if self.context.repo_root is None:
            return
        current = self.transport.current_branch(self.context.repo_root, cancel=cancel)
        if current == branch:
            raise SameBranchError(branch)

    def ensure(self, branch: str, path: Optional[Path] = None, *,
               cancel: Optional[CancelToken] = None) -> Path:
        """Make ``path`` a healthy worktree checked out to ``branch``.

        Raises:
            SameBranchError: ``branch`` is checked out in the primary worktree
            WorktreeError: Git refused to create the worktree
        """
        path = Path(path) if path is not None else self.default_path(branch)
        self.check_same_branch(branch, cancel=cancel)

        if path.exists():
            if self.is_healthy(branch, path, cancel=cancel):
                try:
                    self.transport.sparse_checkout_set(path, self.sparse_patterns, cancel=cancel)
                except GitCommandError as exc:
                    raise WorktreeError(f"Failed to refresh sparse checkout in {path}: {exc}") from exc
                return path
            log_warning("Sync worktree unhealthy, recreating", path=str(path), branch=branch)
            self.remove(path, cancel=cancel)

        self._create(branch, path, cancel=cancel)
        return path

    def is_healthy(self, branch: str, path: Path, *,
                   cancel: Optional[CancelToken] = None) -> bool:
        path = Path(path)
        if not path.is_dir() or not (path / ".git").is_file():
            log_debug("worktree health: missing .git file", path=str(path))
            return False
        try:
            entries = self.transport.worktree_list(self._git_cwd, cancel=cancel)
        except GitCommandError:
            return False
        if not any(same_path(entry.get("worktree", ""), path) for entry in entries):
            log_debug("worktree health: not registered", path=str(path))
            return False
        if self.transport.symbolic_ref(path, cancel=cancel) != f"refs/heads/{branch}":
            log_debug("worktree health: wrong HEAD", path=str(path), branch=branch)
            return False
        sparse = self.transport.config_get(path, "core.sparseCheckout", cancel=cancel)
        if (sparse or "").lower() != "true":
            log_debug("worktree health: sparse checkout disabled", path=str(path))
            return False
        return True

    def remove(self, path: Path, *, cancel: Optional[CancelToken] = None) -> None:
        """Unregister and delete the worktree at ``path``."""
        path = Path(path)
        try:
            self.transport.worktree_remove(self._git_cwd, path, force=True, cancel=cancel)
        except GitCommandError as exc:
            log_debug("git worktree remove failed", path=str(path), error=stderr_of(exc)[:160])
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
        try:
            self.transport.worktree_prune(self._git_cwd, cancel=cancel)
        except GitCommandError as exc:
            log_debug("git worktree prune failed", error=stderr_of(exc)[:160])

    def _create(self, branch: str, path: Path, *, cancel: Optional[CancelToken] = None) -> None:
        cwd = self._git_cwd
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.transport.worktree_prune(cwd, cancel=cancel)
            if not self.transport.branch_exists(cwd, branch, cancel=cancel):
                self._create_branch(branch, cancel=cancel)
            self.transport.worktree_add(cwd, path, branch, no_checkout=True, cancel=cancel)
            self.transport.sparse_checkout_set(path, self.sparse_patterns, cancel=cancel)
            self.transport.checkout(path, branch, force=True, cancel=cancel)
        except GitCommandError as exc:
            raise WorktreeError(
                f"Failed to create sync worktree for '{branch}' at {path}:\n{exc}"
            ) from exc
        log_action("worktree.create", branch=branch, path=str(path))

    def _create_branch(self, branch: str, *, cancel: Optional[CancelToken] = None) -> None:
        cwd = self._git_cwd
        remote = self.resolve_remote(branch, cancel=cancel)
        if self.transport.remote_get_url(cwd, remote, cancel=cancel):
            try:
                self.transport.fetch(cwd, remote, branch, cancel=cancel)
            except GitCommandError as exc:
                text = stderr_of(exc)
                if "couldn't find remote ref" not in text:
                    log_warning("Fetching sync branch failed", branch=branch, remote=remote,
                                error=text.strip().splitlines()[0][:160] if text.strip() else "")
            if self.transport.remote_branch_exists(cwd, remote, branch, cancel=cancel):
                self.transport.branch_create(cwd, branch, f"{remote}/{branch}", track=True, cancel=cancel)
                return

        sha = self.transport.create_empty_root_commit(cwd, ROOT_COMMIT_MESSAGE, cancel=cancel)
        self.transport.branch_create(cwd, branch, sha, cancel=cancel)

    def sync_file_to_worktree(self, rel_path: str, path: Path) -> bool:
        """Copy ``rel_path`` from the primary checkout into the worktree at ``path``."""
        root = self.context.require_root()
        return copy_file_atomic(root / rel_path, Path(path) / rel_path)
