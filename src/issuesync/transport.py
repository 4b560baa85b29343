"""Git transport: one method per git operation the sync engine needs.

Every call runs git as a subprocess through GitPython's ``Git.execute`` so
stdout/stderr capture, timeouts and ``GitCommandError`` reporting behave the
same way everywhere. Failures propagate as ``git.GitCommandError``; callers
classify them by inspecting ``stderr`` the way GitPython users do.

Each method takes an optional ``CancelToken``. A cancelled or expired token
raises ``OperationCancelledError`` before the next call starts, and the time
left on its deadline bounds the running process (``kill_after_timeout``).
"""

from __future__ import annotations

import os
import shlex
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from git import Git, GitCommandError

from .errors import OperationCancelledError
from .observability import log_debug


SYNC_IN_PROGRESS_ENV = "ISSUESYNC_SYNC_IN_PROGRESS"

PathLike = Union[str, Path]


class CancelToken:
    """Cooperative cancellation signal with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self.deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self.cancelled:
            raise OperationCancelledError("operation cancelled")
        if self.expired:
            raise OperationCancelledError("operation deadline exceeded")


def stderr_of(exc: GitCommandError) -> str:
    """Combined stderr/stdout text of a failed git call, lower-cased."""
    parts = []
    for attr in ("stderr", "stdout"):
        value = getattr(exc, attr, "") or ""
        if isinstance(value, bytes):
            value = value.decode("utf-8", "replace")
        parts.append(str(value))
    parts.append(str(exc))
    return "\n".join(parts).lower()


class GitTransport:
    """Named git operations used by the worktree manager and sync protocol.

    Args:
        timeout: Default per-call timeout in seconds (None = no limit)
        allow_prompts: Let git prompt for credentials on a terminal
        author: Name recorded on sync commits (empty = git config)
        email: Email recorded on sync commits (empty = git config)
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        allow_prompts: bool = False,
        author: str = "",
        email: str = "",
    ):
        self.timeout = timeout
        self._env: Dict[str, str] = {}
        if not allow_prompts:
            self._env["GIT_TERMINAL_PROMPT"] = "0"
        if author:
            self._env["GIT_AUTHOR_NAME"] = author
            self._env["GIT_COMMITTER_NAME"] = author
        if email:
            self._env["GIT_AUTHOR_EMAIL"] = email
            self._env["GIT_COMMITTER_EMAIL"] = email

    @classmethod
    def from_config(cls, config) -> "GitTransport":
        """Build a transport from an ``IssueSyncConfig``."""
        return cls(
            timeout=config.sync.git_timeout,
            allow_prompts=config.git.allow_prompts,
            author=config.git.author,
            email=config.git.email,
        )

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def _kill_after(self, cancel: Optional[CancelToken]) -> Optional[float]:
        limits = [t for t in (self.timeout, cancel.remaining() if cancel else None) if t is not None]
        return min(limits) if limits else None

    def _run(
        self,
        cwd: PathLike,
        *args: str,
        cancel: Optional[CancelToken] = None,
        env: Optional[Dict[str, str]] = None,
        binary: bool = False,
    ) -> Union[str, bytes]:
        if cancel is not None:
            cancel.check()
        cmd = ["git", *args]
        quoted = " ".join(shlex.quote(part) for part in cmd)
        log_debug(f"RUN cwd={cwd} cmd={quoted}")
        start = time.time()
        call_env = dict(self._env)
        if env:
            call_env.update(env)
        try:
            out = Git(str(cwd)).execute(
                cmd,
                with_exceptions=True,
                kill_after_timeout=self._kill_after(cancel),
                env=call_env,
                stdout_as_string=not binary,
                strip_newline_in_stdout=not binary,
            )
        except GitCommandError as exc:
            elapsed = time.time() - start
            log_debug(
                f"FAIL rc={exc.status} elapsed={elapsed:.2f}s cmd={quoted}",
                stderr=(str(exc.stderr or "").strip().splitlines() or [""])[0][:160],
            )
            if cancel is not None and (cancel.cancelled or cancel.expired):
                raise OperationCancelledError(f"git {args[0]} did not finish before the deadline") from exc
            raise
        log_debug(f"DONE elapsed={time.time() - start:.2f}s cmd={quoted}")
        return out

    def _text(self, cwd: PathLike, *args: str, cancel: Optional[CancelToken] = None,
              env: Optional[Dict[str, str]] = None) -> str:
        out = self._run(cwd, *args, cancel=cancel, env=env)
        return out if isinstance(out, str) else out.decode("utf-8", "replace")

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    def fetch(self, cwd: PathLike, remote: str, branch: str, *,
              cancel: Optional[CancelToken] = None) -> None:
        self._run(cwd, "fetch", remote, branch, cancel=cancel)

    def push(
        self,
        cwd: PathLike,
        remote: str,
        branch: str,
        *,
        force_with_lease: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        args = ["push", "--set-upstream"]
        if force_with_lease:
            args.append("--force-with-lease")
        args += [remote, branch]
        self._run(cwd, *args, cancel=cancel, env={SYNC_IN_PROGRESS_ENV: "1"})

    def remote_get_url(self, cwd: PathLike, remote: str, *,
                       cancel: Optional[CancelToken] = None) -> Optional[str]:
        try:
            url = self._text(cwd, "remote", "get-url", remote, cancel=cancel).strip()
        except GitCommandError:
            return None
        return url or None

    # ------------------------------------------------------------------
    # History queries
    # ------------------------------------------------------------------

    def rev_parse(self, cwd: PathLike, ref: str, *,
                  cancel: Optional[CancelToken] = None) -> Optional[str]:
        try:
            out = self._text(cwd, "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", cancel=cancel)
        except GitCommandError:
            return None
        return out.strip() or None

    def ref_exists(self, cwd: PathLike, ref: str, *,
                   cancel: Optional[CancelToken] = None) -> bool:
        try:
            self._run(cwd, "show-ref", "--verify", "--quiet", ref, cancel=cancel)
        except GitCommandError:
            return False
        return True

    def branch_exists(self, cwd: PathLike, branch: str, *,
                      cancel: Optional[CancelToken] = None) -> bool:
        return self.ref_exists(cwd, f"refs/heads/{branch}", cancel=cancel)

    def remote_branch_exists(self, cwd: PathLike, remote: str, branch: str, *,
                             cancel: Optional[CancelToken] = None) -> bool:
        return self.ref_exists(cwd, f"refs/remotes/{remote}/{branch}", cancel=cancel)

    def rev_list_counts(self, cwd: PathLike, left: str, right: str, *,
                        cancel: Optional[CancelToken] = None) -> Tuple[int, int]:
        """Commits only in ``left`` and only in ``right``."""
        out = self._text(cwd, "rev-list", "--left-right", "--count", f"{left}...{right}", cancel=cancel)
        parts = out.split()
        if len(parts) != 2:
            raise ValueError(f"unexpected rev-list output: {out!r}")
        return int(parts[0]), int(parts[1])

    def rev_list_count(self, cwd: PathLike, ref: str, *,
                       cancel: Optional[CancelToken] = None) -> int:
        return int(self._text(cwd, "rev-list", "--count", ref, cancel=cancel).strip() or 0)

    def merge_base(self, cwd: PathLike, a: str, b: str, *,
                   cancel: Optional[CancelToken] = None) -> Optional[str]:
        """Nearest common ancestor of ``a`` and ``b``, or None for unrelated histories."""
        try:
            out = self._text(cwd, "merge-base", a, b, cancel=cancel)
        except GitCommandError as exc:
            if exc.status == 1:
                return None
            raise
        return out.strip() or None

    def show_file(self, cwd: PathLike, ref: str, path: str, *,
                  cancel: Optional[CancelToken] = None) -> Optional[bytes]:
        """Content of ``path`` at ``ref``; None when the path or ref does not exist."""
        try:
            out = self._run(cwd, "show", f"{ref}:{path}", cancel=cancel, binary=True)
        except GitCommandError as exc:
            text = stderr_of(exc)
            missing = (
                "does not exist" in text
                or "exists on disk, but not in" in text
                or "invalid object name" in text
                or "bad revision" in text
                or "unknown revision" in text
            )
            if missing:
                return None
            raise
        return out if isinstance(out, bytes) else out.encode("utf-8")

    def log_oneline(self, cwd: PathLike, rev_range: str, *,
                    cancel: Optional[CancelToken] = None) -> List[str]:
        try:
            out = self._text(cwd, "log", "--oneline", rev_range, cancel=cancel)
        except GitCommandError:
            return []
        return [line for line in out.splitlines() if line.strip()]

    # ------------------------------------------------------------------
    # Working tree mutation
    # ------------------------------------------------------------------

    def reset_hard(self, cwd: PathLike, ref: str, *,
                   cancel: Optional[CancelToken] = None) -> None:
        self._run(cwd, "reset", "--hard", ref, cancel=cancel)

    def merge_ff_only(self, cwd: PathLike, ref: str, *,
                      cancel: Optional[CancelToken] = None) -> None:
        self._run(cwd, "merge", "--ff-only", ref, cancel=cancel)

    def merge(self, cwd: PathLike, ref: str, message: str, *, allow_unrelated: bool = False,
              cancel: Optional[CancelToken] = None) -> None:
        args = ["merge", "--no-edit", "-m", message]
        if allow_unrelated:
            # a sync branch created from scratch starts at its own root commit
            args.append("--allow-unrelated-histories")
        self._run(cwd, *args, ref, cancel=cancel)

    def add(self, cwd: PathLike, *paths: str, force: bool = False, sparse: bool = False,
            cancel: Optional[CancelToken] = None) -> None:
        args = ["add"]
        if force:
            args.append("-f")
        if sparse:
            args.append("--sparse")
        self._run(cwd, *args, "--", *paths, cancel=cancel)

    def commit(self, cwd: PathLike, message: str, *, no_verify: bool = True,
               paths: Sequence[str] = (), cancel: Optional[CancelToken] = None) -> None:
        args = ["commit"]
        if no_verify:
            args.append("--no-verify")
        args += ["-m", message]
        if paths:
            args += ["--", *paths]
        self._run(cwd, *args, cancel=cancel, env={SYNC_IN_PROGRESS_ENV: "1"})

    def status_porcelain(self, cwd: PathLike, *paths: str, ignored: bool = False,
                         untracked: bool = True, cancel: Optional[CancelToken] = None) -> str:
        args = ["status", "--porcelain", "--untracked-files=all" if untracked else "--untracked-files=no"]
        if ignored:
            args.append("--ignored")
        if paths:
            args += ["--", *paths]
        return self._text(cwd, *args, cancel=cancel)

    def checkout(self, cwd: PathLike, branch: str, *, force: bool = False,
                 cancel: Optional[CancelToken] = None) -> None:
        args = ["checkout"]
        if force:
            args.append("-f")
        self._run(cwd, *args, branch, cancel=cancel)

    def sparse_checkout_set(self, cwd: PathLike, patterns: Sequence[str], *,
                            cancel: Optional[CancelToken] = None) -> None:
        self._run(cwd, "sparse-checkout", "set", "--no-cone", *patterns, cancel=cancel)

    # ------------------------------------------------------------------
    # Refs and config
    # ------------------------------------------------------------------

    def symbolic_ref(self, cwd: PathLike, ref: str = "HEAD", *,
                     cancel: Optional[CancelToken] = None) -> Optional[str]:
        """Full ref name ``ref`` points at, or None when detached."""
        try:
            out = self._text(cwd, "symbolic-ref", "-q", ref, cancel=cancel)
        except GitCommandError:
            return None
        return out.strip() or None

    def current_branch(self, cwd: PathLike, *,
                       cancel: Optional[CancelToken] = None) -> Optional[str]:
        ref = self.symbolic_ref(cwd, cancel=cancel)
        if ref and ref.startswith("refs/heads/"):
            return ref[len("refs/heads/"):]
        return None

    def config_get(self, cwd: PathLike, key: str, *,
                   cancel: Optional[CancelToken] = None) -> Optional[str]:
        try:
            out = self._text(cwd, "config", "--get", key, cancel=cancel)
        except GitCommandError:
            return None
        return out.strip() or None

    def branch_create(self, cwd: PathLike, branch: str, start_point: str, *,
                      track: bool = False, cancel: Optional[CancelToken] = None) -> None:
        args = ["branch"]
        if track:
            args.append("--track")
        self._run(cwd, *args, branch, start_point, cancel=cancel)

    def create_empty_root_commit(self, cwd: PathLike, message: str, *,
                                 cancel: Optional[CancelToken] = None) -> str:
        """Write a parentless commit with an empty tree and return its sha."""
        tree = self._text(cwd, "mktree", cancel=cancel).strip()
        return self._text(cwd, "commit-tree", tree, "-m", message, cancel=cancel).strip()

    # ------------------------------------------------------------------
    # Worktrees
    # ------------------------------------------------------------------

    def worktree_add(self, cwd: PathLike, path: PathLike, branch: str, *,
                     no_checkout: bool = True, cancel: Optional[CancelToken] = None) -> None:
        args = ["worktree", "add"]
        if no_checkout:
            args.append("--no-checkout")
        self._run(cwd, *args, str(path), branch, cancel=cancel)

    def worktree_remove(self, cwd: PathLike, path: PathLike, *, force: bool = True,
                        cancel: Optional[CancelToken] = None) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        self._run(cwd, *args, str(path), cancel=cancel)

    def worktree_prune(self, cwd: PathLike, *,
                       cancel: Optional[CancelToken] = None) -> None:
        self._run(cwd, "worktree", "prune", cancel=cancel)

    def worktree_list(self, cwd: PathLike, *,
                      cancel: Optional[CancelToken] = None) -> List[Dict[str, str]]:
        """Parsed ``git worktree list --porcelain`` entries."""
        out = self._text(cwd, "worktree", "list", "--porcelain", cancel=cancel)
        entries: List[Dict[str, str]] = []
        current: Dict[str, str] = {}
        for line in out.splitlines():
            if not line.strip():
                if current:
                    entries.append(current)
                    current = {}
                continue
            key, _, value = line.partition(" ")
            current[key] = value
        if current:
            entries.append(current)
        return entries


def same_path(a: PathLike, b: PathLike) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return Path(a).resolve() == Path(b).resolve()
