"""Testing utilities for the sync engine.

Provides record builders, an in-memory record store, a scripted transport
and helpers that build real git repositories (bare remote plus clones) in a
temporary directory.

Usage:
    from issuesync.testing import FakeTransport, make_record, jsonl

    transport = FakeTransport()
    transport.script("push", non_fast_forward_error())
    # the first push is rejected, later pushes go to git

    content = jsonl(make_record("is-1", title="First"))
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from git import GitCommandError, Repo

from .records import STATUS_CLOSED, STATUS_TOMBSTONE, Record, serialize_record_set
from .transport import CancelToken, GitTransport


DEFAULT_TS = "2026-01-01T00:00:00Z"


def make_record(record_id: str, title: str = "", status: str = "open", **fields: Any) -> Record:
    """Build a record that satisfies the lifecycle invariants.

    ``closed_at``/``deleted_at`` default to a fixed timestamp for closed and
    tombstoned records.
    """
    record: Record = {
        "id": record_id,
        "title": title or f"Issue {record_id}",
        "status": status,
        "priority": 2,
        "issue_type": "task",
        "created_at": DEFAULT_TS,
        "updated_at": DEFAULT_TS,
    }
    if status == STATUS_CLOSED:
        record["closed_at"] = DEFAULT_TS
    if status == STATUS_TOMBSTONE:
        record["deleted_at"] = DEFAULT_TS
    record.update(fields)
    return record


def jsonl(*records: Record) -> bytes:
    return serialize_record_set(list(records))


class InMemoryRecordStore:
    """RecordStore kept in memory; remembers every replace call."""

    def __init__(self, data: bytes = b""):
        self.data = data
        self.replaced: List[bytes] = []

    def get_record_set(self) -> bytes:
        return self.data

    def replace_record_set(self, data: bytes) -> int:
        self.data = data
        self.replaced.append(data)
        return sum(1 for line in data.splitlines() if line.strip())


def non_fast_forward_error() -> GitCommandError:
    return GitCommandError(
        ["git", "push"],
        1,
        stderr=(
            " ! [rejected]        issues-sync -> issues-sync (fetch first)\n"
            "error: failed to push some refs\n"
            "hint: Updates were rejected because the remote contains work that you do not\n"
            "hint: have locally."
        ),
    )


def network_error() -> GitCommandError:
    return GitCommandError(
        ["git", "push"],
        128,
        stderr="fatal: unable to access 'https://example.invalid/repo.git/': Could not resolve host",
    )


class FakeTransport(GitTransport):
    """GitTransport that records every call and can inject failures.

    ``script("push", err, None, err)`` makes the 1st and 3rd push raise
    ``err`` before reaching git; ``None`` lets that call through. With
    ``passthrough=False`` unscripted calls return empty output instead of
    running git.
    """

    def __init__(self, *, passthrough: bool = True, **kwargs: Any):
        super().__init__(**kwargs)
        self.passthrough = passthrough
        self.calls: List[Tuple[str, ...]] = []
        self._scripted: Dict[str, List[Optional[Exception]]] = {}

    def script(self, subcommand: str, *outcomes: Optional[Exception]) -> None:
        self._scripted.setdefault(subcommand, []).extend(outcomes)

    def count(self, subcommand: str) -> int:
        return sum(1 for call in self.calls if call and call[0] == subcommand)

    def _run(self, cwd, *args: str, cancel: Optional[CancelToken] = None,
             env: Optional[Dict[str, str]] = None, binary: bool = False):
        self.calls.append(tuple(args))
        queue = self._scripted.get(args[0]) if args else None
        if queue:
            outcome = queue.pop(0)
            if outcome is not None:
                raise outcome
        if not self.passthrough:
            return b"" if binary else ""
        return super()._run(cwd, *args, cancel=cancel, env=env, binary=binary)


# ---------------------------------------------------------------------------
# Git repository builders
# ---------------------------------------------------------------------------


def configure_identity(repo: Repo, name: str = "Test User", email: str = "test@example.com") -> None:
    with repo.config_writer() as cw:
        cw.set_value("user", "name", name)
        cw.set_value("user", "email", email)
        cw.set_value("commit", "gpgsign", "false")


def init_remote_repo(remote_path: Path) -> Repo:
    remote_path.mkdir(parents=True, exist_ok=True)
    return Repo.init(remote_path, bare=True)


def seed_remote_with_main(remote_path: Path) -> Repo:
    """Create a bare remote with a seeded main branch."""
    remote = init_remote_repo(remote_path)
    workdir = remote_path.parent / f"{remote_path.stem}-seed"
    repo = Repo.init(workdir)
    configure_identity(repo)
    (workdir / "README.md").write_text("seed\n")
    (workdir / ".gitignore").write_text(".issues/\n")
    repo.index.add(["README.md", ".gitignore"])
    repo.index.commit("seed")
    repo.git.branch("-M", "main")
    repo.create_remote("origin", remote_path.as_posix())
    repo.remotes.origin.push("main:main")
    return remote


def clone_replica(remote_path: Path, path: Path, name: str = "Test User") -> Repo:
    """Clone ``remote_path`` into ``path`` on main with a commit identity."""
    repo = Repo.clone_from(remote_path.as_posix(), path, branch="main")
    configure_identity(repo, name=name, email=f"{name.lower().replace(' ', '.')}@example.com")
    return repo


def write_records(root: Path, records: Iterable[Record], rel_path: str = ".issues/issues.jsonl") -> Path:
    path = Path(root) / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(serialize_record_set(list(records)))
    return path


@contextmanager
def mock_env_vars(**env_vars):
    """Temporarily set environment variables. A value of None deletes the var."""
    old_env: Dict[str, Optional[str]] = {}
    try:
        for key, value in env_vars.items():
            old_env[key] = os.environ.get(key)
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = str(value)
        yield
    finally:
        for key, old_value in old_env.items():
            if old_value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = old_value
