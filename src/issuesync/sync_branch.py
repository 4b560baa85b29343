"""Commit / pull / push protocol for the sync branch.

Architecture:
- The record set lives on a dedicated branch, checked out in an isolated
  worktree (see ``worktree.py``) so the user's checkout is never disturbed.
- Commit: export, pre-emptive fast-forward, copy into the worktree, commit,
  push.
- Pull: fetch, classify divergence, then copy (up to date / fast-forward) or
  content-merge (diverged) and copy the committed result back.
- Push: bounded retry loop. A non-fast-forward rejection is answered with a
  content merge against the new remote tip, never with a textual rebase,
  because replaying commits can resurrect a deleted record.

This class is not thread-safe. The CLI holds an ``AdvisoryLock`` on the
worktree for the whole operation.
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from git import GitCommandError

from .config_schema import ConflictStrategy, IssueSyncConfig
from .conflicts import (
    ConflictState,
    clear_conflict_state,
    load_conflict_state,
    resolve_conflicts as resolve_records,
    save_conflict_state,
)
from .divergence import DivergenceInfo, SyncState, classify, get_divergence
from .errors import (
    BranchMergeError,
    DivergenceRecoveryError,
    GitPullError,
    GitPushError,
    MergeConflictError,
    MergeError,
    RemoteNotConfiguredError,
    SameBranchError,
    SyncEnvironmentError,
)
from .fs import atomic_write_bytes, read_bytes, utcnow_iso
from .gitcontext import RepoContext
from .merge import MergeResult, merge_record_sets
from .observability import log_action, log_debug, log_info, log_warning, timeit
from .safety import check_content, forensic_report
from .storage import RecordStore
from .transport import CancelToken, GitTransport, stderr_of
from .worktree import WorktreeManager


PUSH_WAIT_MESSAGE = (
    "Git push is waiting (possibly for authentication). "
    "If this hangs, check for a credential prompt or browser login."
)


class PushOutcome(str, Enum):
    """Why the push loop stopped."""

    PUSHED = "pushed"
    EXHAUSTED = "exhausted"
    CONFLICT = "conflict"


@dataclass
class CommitResult:
    committed: bool
    pushed: bool
    branch: str
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PullResult:
    branch: str
    pulled: bool = False
    merged: bool = False
    fast_forwarded: bool = False
    pushed: bool = False
    safety_check_triggered: bool = False
    safety_check_details: str = ""
    safety_warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncStatus:
    branch: str
    current_branch: Optional[str]
    branch_exists: bool
    sync_only_commits: List[str] = field(default_factory=list)
    current_only_commits: List[str] = field(default_factory=list)
    file_differs: bool = False
    pending_conflicts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ResolveResult:
    branch: str
    strategy: str
    dry_run: bool = False
    record_ids: List[str] = field(default_factory=list)
    winners: Dict[str, str] = field(default_factory=dict)
    resolved: bool = False
    pushed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BranchMergeResult:
    """Outcome of merging the sync branch into the user's branch."""

    branch: str
    into: str
    commits: List[str] = field(default_factory=list)
    dry_run: bool = False
    merged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_non_fast_forward(text: str) -> bool:
    """True when push output describes a rejection because the remote moved."""
    text = text.lower()
    return (
        "non-fast-forward" in text
        or "fetch first" in text
        or ("rejected" in text and "behind" in text)
    )


class SyncBranchManager:
    """Replicate the record set through a dedicated git branch.

    Args:
        context: Repository the primary record file lives in
        config: Loaded configuration (defaults when None)
        transport: Git operations (built from config when None)
        store: Storage collaborator; exported before commit and handed the
            result after pull
        notify: Callback for informational messages (push waiting, etc.)
        worktree_path: Override for the sync worktree location
        sleep: Backoff sleeper (tests pass a no-op)
    """

    def __init__(
        self,
        context: RepoContext,
        config: Optional[IssueSyncConfig] = None,
        transport: Optional[GitTransport] = None,
        store: Optional[RecordStore] = None,
        *,
        notify: Optional[Callable[[str], None]] = None,
        worktree_path: Optional[Path] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.context = context
        self.config = config or IssueSyncConfig.default()
        self.transport = transport or GitTransport.from_config(self.config)
        self.store = store
        self.notify = notify or log_info
        self._sleep = sleep
        sync = self.config.sync
        self.branch = sync.branch
        self.worktrees = WorktreeManager(
            context, self.transport, data_dir=sync.data_dir, remote=sync.remote
        )
        self.worktree_path = Path(worktree_path) if worktree_path else context.worktree_path(self.branch)

    # ------------------------------------------------------------------
    # Paths and helpers
    # ------------------------------------------------------------------

    @property
    def records_rel_path(self) -> str:
        return self.config.sync.records_rel_path

    @property
    def metadata_rel_path(self) -> str:
        return self.config.sync.metadata_rel_path

    @property
    def primary_records_path(self) -> Path:
        return self.context.require_root() / self.records_rel_path

    @property
    def primary_metadata_path(self) -> Path:
        return self.context.require_root() / self.metadata_rel_path

    @property
    def primary_data_dir(self) -> Path:
        return self.context.require_root() / self.config.sync.data_dir

    @property
    def remote_ref(self) -> str:
        return f"{self.remote}/{self.branch}"

    @property
    def remote(self) -> str:
        return self.worktrees.resolve_remote(self.branch)

    def _require_remote(self, cwd: Path, remote: str, cancel: Optional[CancelToken]) -> None:
        if not self.transport.remote_get_url(cwd, remote, cancel=cancel):
            raise RemoteNotConfiguredError(
                f"No remote '{remote}' is configured for sync branch '{self.branch}'.\n"
                "Add one with 'git remote add origin <url>' or set sync.remote in "
                ".issuesync/config.toml."
            )

    def _has_changes(self, cwd: Path, cancel: Optional[CancelToken], *paths: str) -> bool:
        # --ignored: the data dir is usually gitignored on the user's branch
        out = self.transport.status_porcelain(
            cwd, *(paths or (self.config.sync.data_dir,)), ignored=True, cancel=cancel
        )
        return bool(out.strip())

    def _commit_worktree(self, wt: Path, message: str, cancel: Optional[CancelToken]) -> None:
        # -f: the data dir may be ignored on the user's branch
        self.transport.add(wt, self.config.sync.data_dir, force=True, sparse=True, cancel=cancel)
        self.transport.commit(wt, message, cancel=cancel)

    def _export(self) -> None:
        mode = self.config.sync.mode
        if self.store is None or not (mode.exports_on_push or mode.exports_on_change):
            return
        data = self.store.get_record_set()
        if data != read_bytes(self.primary_records_path):
            atomic_write_bytes(self.primary_records_path, data)

    def _copy_committed_back(self, wt: Path, cancel: Optional[CancelToken]) -> bool:
        """Copy HEAD's record (and metadata) file into the primary checkout.

        Only committed content is copied: a half-written worktree file from an
        interrupted run must never reach the primary location.
        """
        content = self.transport.show_file(wt, "HEAD", self.records_rel_path, cancel=cancel)
        if content is None:
            return False
        if content != read_bytes(self.primary_records_path):
            atomic_write_bytes(self.primary_records_path, content)
        try:
            metadata = self.transport.show_file(wt, "HEAD", self.metadata_rel_path, cancel=cancel)
        except GitCommandError:
            metadata = None
        if metadata is not None:
            atomic_write_bytes(self.primary_metadata_path, metadata)
        if self.store is not None:
            count = self.store.replace_record_set(content)
            log_debug("store updated from sync branch", records=count)
        return True

    def _fetch(self, wt: Path, remote: str, cancel: Optional[CancelToken]) -> bool:
        """Fetch the sync branch. False when the remote does not have it yet."""
        try:
            self.transport.fetch(wt, remote, self.branch, cancel=cancel)
        except GitCommandError as exc:
            if "couldn't find remote ref" in stderr_of(exc):
                return False
            raise GitPullError(
                f"Failed to fetch {remote}/{self.branch}: {str(exc.stderr or exc).strip()}"
            ) from exc
        return self.transport.remote_branch_exists(wt, remote, self.branch, cancel=cancel)

    def _content_merge(self, wt: Path, remote_ref: str,
                       cancel: Optional[CancelToken]) -> Tuple[MergeResult, bytes]:
        """Three-way merge of HEAD and ``remote_ref``. Returns (result, local content)."""
        rel = self.records_rel_path
        base_sha = self.transport.merge_base(wt, "HEAD", remote_ref, cancel=cancel)
        base = self.transport.show_file(wt, base_sha, rel, cancel=cancel) if base_sha else b""
        local = self.transport.show_file(wt, "HEAD", rel, cancel=cancel) or b""
        remote = self.transport.show_file(wt, remote_ref, rel, cancel=cancel) or b""
        result = merge_record_sets(base, local, remote, strategy=self.config.conflict.strategy)
        log_action(
            "sync.content_merge",
            branch=self.branch,
            base=base_sha or "",
            **result.to_dict(),
        )
        return result, local

    def _adopt_remote_with(self, wt: Path, remote_ref: str, content: bytes, message: str,
                           cancel: Optional[CancelToken]) -> bool:
        """Reset to the remote tip and commit ``content`` on top. True if committed."""
        self.transport.reset_hard(wt, remote_ref, cancel=cancel)
        atomic_write_bytes(wt / self.records_rel_path, content)
        if not self._has_changes(wt, cancel):
            return False
        self._commit_worktree(wt, message, cancel)
        return True

    def _save_conflicts(self, wt: Path, error: Exception, operation: str,
                        cancel: Optional[CancelToken]) -> None:
        """Persist a content-merge conflict so ``resolve_conflicts`` can finish it later.

        HEAD is still the local tip here: the merge failed before anything
        was reset.
        """
        if not isinstance(error, MergeConflictError):
            return
        state = ConflictState.from_error(
            error,
            branch=self.branch,
            operation=operation,
            base_commit=self.transport.merge_base(wt, "HEAD", self.remote_ref, cancel=cancel),
            local_commit=self.transport.rev_parse(wt, "HEAD", cancel=cancel),
            remote_commit=self.transport.rev_parse(wt, self.remote_ref, cancel=cancel),
        )
        path = save_conflict_state(self.primary_data_dir, state)
        log_warning("sync conflicts recorded", branch=self.branch, path=str(path),
                    records=len(state.record_ids), operation=operation)

    def _clear_conflicts(self) -> None:
        if clear_conflict_state(self.primary_data_dir):
            log_info("pending sync conflicts cleared", branch=self.branch)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(self, *, push: bool = True, message: Optional[str] = None,
               cancel: Optional[CancelToken] = None) -> CommitResult:
        """Commit the primary record file to the sync branch.

        Returns ``committed=False`` when there was nothing to commit.
        """
        if not self.config.sync.mode.uses_sync_branch:
            log_info("sync branch disabled by sync.mode", mode=self.config.sync.mode.value)
            return CommitResult(committed=False, pushed=False, branch=self.branch)

        with timeit("sync.commit", branch=self.branch) as info:
            self._export()
            wt = self.worktrees.ensure(self.branch, self.worktree_path, cancel=cancel)
            remote = self.remote

            content = self._preemptive_sync(wt, remote, cancel)
            # the fast-forward brought in records the primary file lacks
            merged_in = content is not None and content != read_bytes(self.primary_records_path)
            if content is not None:
                atomic_write_bytes(wt / self.records_rel_path, content)
            if self.primary_metadata_path.exists():
                self.worktrees.sync_file_to_worktree(self.metadata_rel_path, wt)

            if not self._has_changes(wt, cancel):
                if merged_in:
                    self._copy_committed_back(wt, cancel)
                info["outcome"] = "noop"
                return CommitResult(committed=False, pushed=False, branch=self.branch)

            message = message or f"issuesync: {utcnow_iso()}"
            self._commit_worktree(wt, message, cancel)
            if merged_in:
                self._copy_committed_back(wt, cancel)

            pushed = False
            if push:
                if self.transport.remote_get_url(wt, remote, cancel=cancel):
                    self.push(cancel=cancel)
                    pushed = True
                else:
                    log_warning("No remote configured; sync commit kept local",
                                branch=self.branch, remote=remote)
            info["pushed"] = pushed
            return CommitResult(committed=True, pushed=pushed, branch=self.branch, message=message)

    def _preemptive_sync(self, wt: Path, remote: str,
                         cancel: Optional[CancelToken]) -> Optional[bytes]:
        """Fast-forward to the remote before staging, best-effort.

        Returns the content to write into the worktree, or None when the
        primary file is missing. When the fast-forward brought in remote
        records, the local file is merged against them (base = the previous
        HEAD) so committing it cannot drop what the remote added.

        The merge runs before the fast-forward. When it fails, HEAD stays
        where it was and the local file is committed on the old tip; the push
        then meets the same conflict and fails closed.
        """
        local = read_bytes(self.primary_records_path) if self.primary_records_path.exists() else None
        rel = self.records_rel_path
        try:
            if not self.transport.remote_get_url(wt, remote, cancel=cancel):
                return local
            if not self._fetch(wt, remote, cancel):
                return local
            local_ahead, remote_ahead = get_divergence(
                self.transport, wt, self.branch, remote, cancel=cancel
            )
            if classify(local_ahead, remote_ahead) is not SyncState.FAST_FORWARD:
                return local
            before = self.transport.show_file(wt, "HEAD", rel, cancel=cancel) or b""
            after = self.transport.show_file(wt, self.remote_ref, rel, cancel=cancel) or b""
        except (GitCommandError, GitPullError) as exc:
            log_debug("pre-emptive sync skipped", error=str(exc)[:160])
            return local

        content = local
        if local is not None:
            try:
                content = merge_record_sets(
                    before, local, after, strategy=self.config.conflict.strategy
                ).content
            except MergeError as exc:
                log_warning("pre-emptive merge failed, committing on the current tip",
                            branch=self.branch, error=str(exc).splitlines()[0])
                return local

        try:
            self.transport.merge_ff_only(wt, self.remote_ref, cancel=cancel)
        except GitCommandError as exc:
            log_debug("pre-emptive sync skipped", error=str(exc)[:160])
            return local
        log_debug("pre-emptive fast-forward", remote_ahead=remote_ahead)
        return content

    def commit_in_place(self, *, push: bool = True, message: Optional[str] = None,
                        cancel: Optional[CancelToken] = None) -> CommitResult:
        """Commit the data directory directly on the current checkout.

        Fallback for when the sync branch is the branch the user has checked
        out, so no second worktree can exist for it.
        """
        root = self.context.require_root()
        with timeit("sync.commit_in_place", branch=self.branch) as info:
            self._export()
            # only the synced files; the data dir may also hold a local database
            paths = [p for p in (self.records_rel_path, self.metadata_rel_path)
                     if (root / p).exists()]
            if not paths or not self._has_changes(root, cancel, *paths):
                info["outcome"] = "noop"
                return CommitResult(committed=False, pushed=False, branch=self.branch)
            message = message or f"issuesync: {utcnow_iso()}"
            self.transport.add(root, *paths, force=True, cancel=cancel)
            self.transport.commit(root, message, paths=paths, cancel=cancel)

            pushed = False
            remote = self.remote
            if push and self.transport.remote_get_url(root, remote, cancel=cancel):
                outcome, error = self._push_loop(root, remote, cancel, recover=False)
                if outcome is PushOutcome.CONFLICT:
                    raise DivergenceRecoveryError(
                        f"Push of '{self.branch}' was rejected because the remote moved.\n"
                        "Pull the branch (git pull --no-rebase) and run the commit again.",
                        cause=error,
                    )
                if outcome is PushOutcome.EXHAUSTED:
                    raise GitPushError(self._exhausted_message(error))
                pushed = True
            info["pushed"] = pushed
            return CommitResult(committed=True, pushed=pushed, branch=self.branch, message=message)

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(self, *, push: bool = True, cancel: Optional[CancelToken] = None) -> PullResult:
        """Bring remote sync-branch changes into the primary record file."""
        result = PullResult(branch=self.branch)
        if not self.config.sync.mode.uses_sync_branch:
            log_info("sync branch disabled by sync.mode", mode=self.config.sync.mode.value)
            return result

        with timeit("sync.pull", branch=self.branch) as info:
            wt = self.worktrees.ensure(self.branch, self.worktree_path, cancel=cancel)
            remote = self.remote
            self._require_remote(wt, remote, cancel)
            if not self._fetch(wt, remote, cancel):
                info["outcome"] = "no_remote_branch"
                return result

            local_ahead, remote_ahead = get_divergence(
                self.transport, wt, self.branch, remote, cancel=cancel
            )
            state = classify(local_ahead, remote_ahead)
            info["state"] = state.value

            if state is SyncState.UP_TO_DATE:
                self._copy_committed_back(wt, cancel)
                self._clear_conflicts()
                result.pulled = True
                return result

            if state is SyncState.FAST_FORWARD:
                self.transport.merge_ff_only(wt, self.remote_ref, cancel=cancel)
                self._copy_committed_back(wt, cancel)
                self._clear_conflicts()
                result.pulled = True
                result.fast_forwarded = True
                return result

            try:
                merged, local_content = self._content_merge(wt, self.remote_ref, cancel)
            except MergeError as exc:
                self._save_conflicts(wt, exc, "pull", cancel)
                info["outcome"] = "conflict"
                raise DivergenceRecoveryError(
                    self._recovery_message(
                        wt, exc,
                        headline=(
                            f"Pull of sync branch '{self.branch}' found local and remote "
                            "changes the content merge could not reconcile:"
                        ),
                    ),
                    cause=exc,
                ) from exc
            message = (
                f"issuesync: merge divergent histories "
                f"({local_ahead} local + {remote_ahead} remote commits)"
            )
            committed = self._adopt_remote_with(wt, self.remote_ref, merged.content, message, cancel)
            self._copy_committed_back(wt, cancel)
            result.pulled = True
            result.merged = True

            withhold = self._apply_safety_check(result, local_content, merged.content)
            if push and committed and not withhold:
                self.push(cancel=cancel)
                result.pushed = True
            info["pushed"] = result.pushed
            info["safety_triggered"] = result.safety_check_triggered
            return result

    def _apply_safety_check(self, result: PullResult, before: bytes, after: bytes) -> bool:
        """Fill the safety fields of ``result``. True when the push must be withheld."""
        check = check_content(before, after)
        if not check.triggered:
            return False
        result.safety_check_triggered = True
        result.safety_check_details = check.details
        result.safety_warnings.append(f"Warning: {check.details}")
        result.safety_warnings.extend(forensic_report(before, after))
        withhold = self.config.sync.require_confirmation_on_mass_delete
        if withhold:
            result.safety_warnings.append(
                "Push skipped: confirmation required "
                "(sync.require_confirmation_on_mass_delete = true). "
                "Run 'issuesync push' to publish the merge."
            )
        else:
            result.safety_warnings += [
                "This may indicate accidental mass deletion. Pushing anyway.",
                f"If this was unintended, use 'git reflog {self.branch}' to recover.",
            ]
        log_warning("mass deletion detected during merge", branch=self.branch,
                    details=check.details, withheld=withhold)
        return withhold

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(self, *, cancel: Optional[CancelToken] = None) -> None:
        """Push the sync branch, merging with concurrent writers as needed.

        Raises:
            DivergenceRecoveryError: The remote moved and the content merge
                found conflicting edits
            GitPushError: Retries exhausted on transient failures
        """
        wt = self.worktrees.ensure(self.branch, self.worktree_path, cancel=cancel)
        remote = self.remote
        self._require_remote(wt, remote, cancel)
        with timeit("sync.push", branch=self.branch) as info:
            outcome, error = self._push_loop(wt, remote, cancel, recover=True)
            info["outcome"] = outcome.value
        if outcome is PushOutcome.PUSHED:
            self._clear_conflicts()
            return
        if outcome is PushOutcome.CONFLICT:
            if error is not None:
                self._save_conflicts(wt, error, "push", cancel)
            raise DivergenceRecoveryError(self._recovery_message(wt, error), cause=error)
        raise GitPushError(self._exhausted_message(error))

    def _push_loop(self, cwd: Path, remote: str, cancel: Optional[CancelToken],
                   *, recover: bool) -> Tuple[PushOutcome, Optional[Exception]]:
        max_retries = self.config.sync.max_retries
        backoff = self.config.sync.backoff_base
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            log_debug(f"pushing (attempt {attempt + 1}/{max_retries})", branch=self.branch)
            try:
                self._push_once(cwd, remote, cancel)
                return PushOutcome.PUSHED, None
            except GitCommandError as exc:
                last_error = exc
                text = stderr_of(exc)

            if is_non_fast_forward(text):
                if not recover:
                    return PushOutcome.CONFLICT, last_error
                if attempt == max_retries - 1:
                    break
                log_info("push rejected, merging with remote", branch=self.branch, attempt=attempt + 1)
                try:
                    self._recover_divergence(cwd, remote, cancel)
                except MergeError as exc:
                    return PushOutcome.CONFLICT, exc
                except (GitCommandError, GitPullError) as exc:
                    last_error = exc
                    self._sleep(backoff * (2 ** attempt))
                continue

            log_warning("push failed, retrying", branch=self.branch, attempt=attempt + 1,
                        error=text.strip().splitlines()[0][:160] if text.strip() else "")
            if attempt < max_retries - 1:
                self._sleep(backoff * (2 ** attempt))

        return PushOutcome.EXHAUSTED, last_error

    def _push_once(self, cwd: Path, remote: str, cancel: Optional[CancelToken]) -> None:
        delay = self.config.sync.push_wait_notice
        timer: Optional[threading.Timer] = None
        if delay > 0:
            timer = threading.Timer(delay, self.notify, args=(PUSH_WAIT_MESSAGE,))
            timer.daemon = True
            timer.start()
        try:
            self.transport.push(cwd, remote, self.branch, cancel=cancel)
        finally:
            if timer is not None:
                timer.cancel()

    def _recover_divergence(self, wt: Path, remote: str, cancel: Optional[CancelToken]) -> bool:
        """Content-merge local HEAD with the freshly fetched remote tip.

        Adopts the remote history and commits the merged record set on top.
        Returns True when a merge commit was made.
        """
        if not self._fetch(wt, remote, cancel):
            return False
        merged, _ = self._content_merge(wt, self.remote_ref, cancel)
        committed = self._adopt_remote_with(
            wt,
            self.remote_ref,
            merged.content,
            "issuesync: merge divergent histories (content-level recovery)",
            cancel,
        )
        # the next commit copies the primary file over HEAD; it must hold the merge
        self._copy_committed_back(wt, cancel)
        return committed

    def _recovery_message(self, wt: Path, error: Optional[Exception], *,
                          headline: Optional[str] = None) -> str:
        lines = [
            headline or (
                f"Push of sync branch '{self.branch}' was rejected and the automatic "
                "content merge could not reconcile the two histories:"
            ),
            f"  {error}",
            "",
            "Recovery options:",
            "  1. Reset to remote (discard local sync commits):",
            "       issuesync reset-remote",
            "  2. Force push local (overwrite the remote branch):",
            "       issuesync force-push",
            "  3. Resolve manually in the sync worktree:",
            f"       cd {wt}",
            f"       git fetch {self.remote} {self.branch}",
            f"       # edit {self.records_rel_path}, then commit and push",
        ]
        if isinstance(error, MergeConflictError):
            lines += [
                "  4. Keep one side of each conflicting record:",
                "       issuesync resolve --strategy newest   # or ours / theirs",
            ]
        return "\n".join(lines)

    def _exhausted_message(self, error: Optional[Exception]) -> str:
        detail = ""
        if isinstance(error, GitCommandError):
            detail = str(error.stderr or error).strip()
        elif error is not None:
            detail = str(error)
        return (
            f"Push of sync branch '{self.branch}' failed after "
            f"{self.config.sync.max_retries} attempts: {detail}"
        )

    # ------------------------------------------------------------------
    # Recovery and reporting
    # ------------------------------------------------------------------

    def check_divergence(self, *, cancel: Optional[CancelToken] = None) -> DivergenceInfo:
        """Fetch and report how far local and remote sync tips have drifted."""
        wt = self.worktrees.ensure(self.branch, self.worktree_path, cancel=cancel)
        remote = self.remote
        self._require_remote(wt, remote, cancel)
        info = DivergenceInfo(branch=self.branch, remote=remote, worktree=str(wt))
        if not self._fetch(wt, remote, cancel):
            return info
        info.local_ahead, info.remote_ahead = get_divergence(
            self.transport, wt, self.branch, remote, cancel=cancel
        )
        log_action(
            "sync.check_divergence",
            branch=self.branch,
            local_ahead=info.local_ahead,
            remote_ahead=info.remote_ahead,
            significant=info.is_significant,
        )
        return info

    def reset_to_remote(self, *, cancel: Optional[CancelToken] = None) -> int:
        """Discard local sync commits and adopt the remote tip.

        Returns the number of local commits discarded.
        """
        wt = self.worktrees.ensure(self.branch, self.worktree_path, cancel=cancel)
        remote = self.remote
        self._require_remote(wt, remote, cancel)
        with timeit("sync.reset_to_remote", branch=self.branch) as info:
            if not self._fetch(wt, remote, cancel):
                raise RemoteNotConfiguredError(
                    f"Remote '{remote}' has no branch '{self.branch}' to reset to."
                )
            local_ahead, _ = get_divergence(self.transport, wt, self.branch, remote, cancel=cancel)
            self.transport.reset_hard(wt, self.remote_ref, cancel=cancel)
            self._copy_committed_back(wt, cancel)
            self._clear_conflicts()
            info["discarded"] = local_ahead
            return local_ahead

    def force_push(self, *, cancel: Optional[CancelToken] = None) -> None:
        """Overwrite the remote sync branch with the local one."""
        wt = self.worktrees.ensure(self.branch, self.worktree_path, cancel=cancel)
        remote = self.remote
        self._require_remote(wt, remote, cancel)
        with timeit("sync.force_push", branch=self.branch):
            try:
                self._fetch(wt, remote, cancel)
            except GitPullError as exc:
                log_debug("fetch before force push failed", error=str(exc)[:160])
            try:
                self.transport.push(wt, remote, self.branch, force_with_lease=True, cancel=cancel)
            except GitCommandError as exc:
                raise GitPushError(
                    f"Force push of '{self.branch}' failed: {str(exc.stderr or exc).strip()}"
                ) from exc
            self._clear_conflicts()

    def resolve_conflicts(self, strategy: Optional[str] = None, *, dry_run: bool = False,
                          push: bool = True, cancel: Optional[CancelToken] = None) -> ResolveResult:
        """Finish a merge that stopped on conflicts by keeping one side per record.

        Reads the pending state written by the failed pull or push, merges
        again from the same three commits with each conflicting record taken
        whole from the side ``strategy`` picks, and commits the result on top
        of the remote commit.

        Raises:
            ValueError: ``strategy`` resolves to ``manual``
            MergeConflictError: The merge still conflicts; the state is kept
        """
        state = load_conflict_state(self.primary_data_dir)
        chosen = ConflictStrategy(strategy or self.config.conflict.strategy)
        result = ResolveResult(
            branch=self.branch, strategy=chosen.value, dry_run=dry_run, record_ids=state.record_ids
        )
        if not state.conflicts or dry_run:
            return result
        if chosen is ConflictStrategy.MANUAL:
            raise ValueError(
                "conflict.strategy is 'manual'; pass --strategy ours, theirs or newest to resolve"
            )
        if not (state.local_commit and state.remote_commit):
            raise DivergenceRecoveryError(
                f"The recorded conflicts on '{self.branch}' carry no commits to merge from.\n"
                "Run 'issuesync pull' to detect them again."
            )

        with timeit("sync.resolve", branch=self.branch, strategy=chosen.value) as info:
            wt = self.worktrees.ensure(self.branch, self.worktree_path, cancel=cancel)
            rel = self.records_rel_path
            base = b""
            if state.base_commit:
                base = self.transport.show_file(wt, state.base_commit, rel, cancel=cancel) or b""
            local = self.transport.show_file(wt, state.local_commit, rel, cancel=cancel) or b""
            remote = self.transport.show_file(wt, state.remote_commit, rel, cancel=cancel) or b""
            merged, winners = resolve_records(base, local, remote, state.record_ids, chosen)

            message = f"issuesync: resolve {len(winners)} conflicting record(s) ({chosen.value})"
            committed = self._adopt_remote_with(wt, state.remote_commit, merged.content, message, cancel)
            self._copy_committed_back(wt, cancel)
            self._clear_conflicts()
            result.winners = winners
            result.resolved = True

            if push and committed and self.transport.remote_get_url(wt, self.remote, cancel=cancel):
                self.push(cancel=cancel)
                result.pushed = True
            info["pushed"] = result.pushed
            info["records"] = len(winners)
            return result

    def merge_into_current(self, *, dry_run: bool = False,
                           cancel: Optional[CancelToken] = None) -> BranchMergeResult:
        """Merge the sync branch into the branch checked out in the primary checkout.

        With ``dry_run`` only the commits that would be merged are listed.
        Tracked changes in the checkout must be committed or stashed first.
        """
        root = self.context.require_root()
        current = self.transport.current_branch(root, cancel=cancel)
        if current is None:
            raise SyncEnvironmentError(
                "HEAD is detached; check out the branch to merge the sync branch into."
            )
        if current == self.branch:
            raise SameBranchError(self.branch)
        if not self.transport.branch_exists(root, self.branch, cancel=cancel):
            raise SyncEnvironmentError(f"sync branch '{self.branch}' does not exist")
        if self.transport.status_porcelain(root, untracked=False, cancel=cancel).strip():
            raise SyncEnvironmentError(
                "uncommitted changes detected; commit or stash them first"
            )

        commits = self.transport.log_oneline(root, f"{current}..{self.branch}", cancel=cancel)
        result = BranchMergeResult(branch=self.branch, into=current, commits=commits, dry_run=dry_run)
        if dry_run or not commits:
            return result

        with timeit("sync.merge_into_current", branch=self.branch, into=current) as info:
            try:
                self.transport.merge(
                    root, self.branch, f"Merge sync branch '{self.branch}'",
                    allow_unrelated=True, cancel=cancel,
                )
            except GitCommandError as exc:
                raise BranchMergeError(
                    f"Merging '{self.branch}' into '{current}' failed: "
                    f"{str(exc.stderr or exc).strip()}\n"
                    "Resolve the conflicts and commit, or run 'git merge --abort'."
                ) from exc
            result.merged = True
            info["commits"] = len(commits)
        return result

    def status(self, *, cancel: Optional[CancelToken] = None) -> SyncStatus:
        """Compare the sync branch with the current branch. No network access."""
        root = self.context.require_root()
        current = self.transport.current_branch(root, cancel=cancel)
        exists = self.transport.branch_exists(root, self.branch, cancel=cancel)
        status = SyncStatus(branch=self.branch, current_branch=current, branch_exists=exists)
        status.pending_conflicts = [
            c.reason for c in load_conflict_state(self.primary_data_dir).conflicts
        ]
        if not exists:
            status.file_differs = self.primary_records_path.exists()
            return status
        if current and current != self.branch:
            status.sync_only_commits = self.transport.log_oneline(
                root, f"{current}..{self.branch}", cancel=cancel
            )
            status.current_only_commits = self.transport.log_oneline(
                root, f"{self.branch}..{current}", cancel=cancel
            )
        committed = self.transport.show_file(root, self.branch, self.records_rel_path, cancel=cancel)
        status.file_differs = (committed or b"") != read_bytes(self.primary_records_path)
        return status
