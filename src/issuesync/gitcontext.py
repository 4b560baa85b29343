"""Repository context discovered once per operation and passed down explicitly."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from git import Git, GitCommandError
from git.exc import GitCommandNotFound

from .errors import NotAGitRepositoryError


WORKTREES_DIRNAME = "issuesync-worktrees"


@dataclass(frozen=True)
class RepoContext:
    """Where the repository lives on disk.

    Attributes:
        repo_root: Top of the primary checkout (None for a bare repository)
        git_dir: The checkout's own git directory
        common_dir: Directory shared by all worktrees (refs, objects)
        is_worktree: True when ``repo_root`` is itself a linked worktree
    """

    repo_root: Optional[Path]
    git_dir: Path
    common_dir: Path
    is_worktree: bool = False

    @property
    def is_bare(self) -> bool:
        return self.repo_root is None

    @classmethod
    def discover(cls, path: Path | str | None = None) -> "RepoContext":
        """Resolve the context for ``path`` (default: current directory).

        Raises:
            NotAGitRepositoryError: If ``path`` is not inside a git repository
        """
        start = Path(path or Path.cwd()).resolve()
        if not start.exists():
            raise NotAGitRepositoryError(f"Path does not exist: {start}")
        cwd = start if start.is_dir() else start.parent
        g = Git(str(cwd))
        try:
            out = g.execute(
                ["git", "rev-parse", "--is-bare-repository", "--git-dir", "--git-common-dir"],
                with_exceptions=True,
            )
        except (GitCommandError, GitCommandNotFound) as exc:
            raise NotAGitRepositoryError(
                f"Not a git repository: {cwd}\n"
                "Run 'git init' (or clone the project) before syncing issues."
            ) from exc

        lines = [line.strip() for line in str(out).splitlines() if line.strip()]
        if len(lines) < 3:
            raise NotAGitRepositoryError(f"Unexpected rev-parse output in {cwd}: {out!r}")
        is_bare = lines[0] == "true"
        git_dir = _absolute(cwd, lines[1])
        common_dir = _absolute(cwd, lines[2])

        repo_root: Optional[Path] = None
        if not is_bare:
            try:
                top = g.execute(["git", "rev-parse", "--show-toplevel"], with_exceptions=True)
                repo_root = Path(str(top).strip()).resolve()
            except GitCommandError:
                repo_root = None

        return cls(
            repo_root=repo_root,
            git_dir=git_dir,
            common_dir=common_dir,
            is_worktree=git_dir != common_dir,
        )

    def worktree_path(self, branch: str) -> Path:
        """Default location of the isolated worktree for ``branch``."""
        return self.common_dir / WORKTREES_DIRNAME / branch

    def require_root(self) -> Path:
        if self.repo_root is None:
            raise NotAGitRepositoryError(
                f"{self.common_dir} is a bare repository; issuesync needs a checkout."
            )
        return self.repo_root


def _absolute(cwd: Path, value: str) -> Path:
    p = Path(value)
    if not p.is_absolute():
        p = cwd / p
    return p.resolve()
