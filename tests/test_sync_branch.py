"""Integration tests for the commit / pull / push protocol.

Every test runs against real repositories: a bare remote and one or more
clones ("replicas") of it in a temp directory.
"""

from __future__ import annotations

import time
from pathlib import Path

import pytest
from git import Repo

from issuesync.config_schema import IssueSyncConfig
from issuesync.conflicts import load_conflict_state
from issuesync.errors import (
    DivergenceRecoveryError,
    GitPushError,
    OperationCancelledError,
    RemoteNotConfiguredError,
    SameBranchError,
    SyncEnvironmentError,
)
from issuesync.gitcontext import RepoContext
from issuesync.records import parse_record_set
from issuesync.sync_branch import SyncBranchManager, is_non_fast_forward
from issuesync.testing import (
    FakeTransport,
    InMemoryRecordStore,
    configure_identity,
    jsonl,
    make_record,
    network_error,
    non_fast_forward_error,
    write_records,
)
from issuesync.transport import CancelToken


RECORDS = ".issues/issues.jsonl"


def make_config(**sync) -> IssueSyncConfig:
    values = {"push_wait_notice": 0, "backoff_base": 0}
    values.update(sync)
    return IssueSyncConfig.model_validate({"sync": values})


def manager_for(repo: Repo, config=None, **kwargs) -> SyncBranchManager:
    context = RepoContext.discover(repo.working_tree_dir)
    return SyncBranchManager(context, config or make_config(), **kwargs)


def primary_records(repo: Repo) -> dict:
    return parse_record_set((Path(repo.working_tree_dir) / RECORDS).read_bytes())


def remote_records(remote_path: Path, branch: str = "issues-sync") -> dict:
    return parse_record_set(Repo(remote_path).git.show(f"{branch}:{RECORDS}"))


def remote_tip(remote_path: Path, branch: str = "issues-sync") -> str:
    return Repo(remote_path).heads[branch].commit.hexsha


def worktree_head(mgr: SyncBranchManager) -> str:
    return Repo(mgr.worktree_path).head.commit.hexsha


def conflicting_titles(alice, bob, *, push_local: bool = False):
    """is-1 starts as X; bob pushes Z while alice edits it to Y."""
    write_records(alice.working_tree_dir, [make_record("is-1", title="X")])
    mgr_a = manager_for(alice)
    mgr_a.commit()
    mgr_b = manager_for(bob)
    mgr_b.pull()

    write_records(alice.working_tree_dir, [make_record("is-1", title="Y")])
    mgr_a.commit(push=push_local)
    write_records(bob.working_tree_dir, [make_record("is-1", title="Z")])
    mgr_b.commit()
    return mgr_a, mgr_b


@pytest.fixture
def alice(make_replica):
    return make_replica("alice")


@pytest.fixture
def bob(make_replica):
    return make_replica("bob")


class TestCommit:
    def test_commit_pushes_record_file(self, alice, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])

        result = manager_for(alice).commit()

        assert result.committed and result.pushed
        assert result.message.startswith("issuesync: ")
        assert sorted(remote_records(remote_repo)) == ["is-1", "is-2"]
        # the user's branch never sees sync commits
        assert alice.head.commit.message.strip() == "seed"

    def test_commit_without_changes_is_noop(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(alice)
        mgr.commit()

        result = mgr.commit()

        assert not result.committed
        assert not result.pushed

    def test_commit_without_record_file_is_noop(self, alice):
        assert not manager_for(alice).commit().committed

    def test_commit_no_push_keeps_remote(self, alice, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1")])

        result = manager_for(alice).commit(push=False, message="local only")

        assert result.committed and not result.pushed
        assert "issues-sync" not in [h.name for h in Repo(remote_repo).heads]

    def test_commit_exports_from_store(self, alice, remote_repo):
        store = InMemoryRecordStore(jsonl(make_record("is-9", title="from store")))

        manager_for(alice, store=store).commit()

        assert remote_records(remote_repo)["is-9"]["title"] == "from store"
        assert primary_records(alice)["is-9"]["title"] == "from store"

    def test_realtime_mode_also_exports(self, alice, remote_repo):
        store = InMemoryRecordStore(jsonl(make_record("is-9")))

        manager_for(alice, make_config(mode="realtime"), store=store).commit()

        assert "is-9" in remote_records(remote_repo)

    def test_native_mode_skips_sync_branch(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(alice, make_config(mode="dolt-native"))

        assert not mgr.commit().committed
        assert not mgr.pull().pulled
        assert not mgr.worktree_path.exists()

    def test_commit_without_remote_stays_local(self, tmp_path):
        repo = Repo.init(tmp_path / "solo")
        configure_identity(repo)
        write_records(repo.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(repo)

        result = mgr.commit()

        assert result.committed and not result.pushed
        with pytest.raises(RemoteNotConfiguredError):
            mgr.pull()
        with pytest.raises(RemoteNotConfiguredError):
            mgr.push()

    def test_conflicting_remote_edit_survives_repeated_commits(self, alice, bob, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1", title="X")])
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()

        write_records(alice.working_tree_dir, [make_record("is-1", title="Z")])
        mgr_a.commit()
        write_records(bob.working_tree_dir, [make_record("is-1", title="Y")])

        with pytest.raises(DivergenceRecoveryError):
            mgr_b.commit()
        second = mgr_b.commit()

        assert not second.committed
        assert remote_records(remote_repo)["is-1"]["title"] == "Z"
        assert primary_records(bob)["is-1"]["title"] == "Y"
        assert load_conflict_state(mgr_b.primary_data_dir).record_ids == ["is-1"]

    def test_cancelled_token_stops_before_git(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        transport = FakeTransport()
        token = CancelToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            manager_for(alice, transport=transport).commit(cancel=token)

        assert transport.calls[:1] == [("symbolic-ref", "-q", "HEAD")]
        assert not manager_for(alice).worktree_path.exists()


class TestPull:
    def test_pull_brings_remote_records(self, alice, bob):
        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        manager_for(alice).commit()

        result = manager_for(bob).pull()

        assert result.pulled
        assert sorted(primary_records(bob)) == ["is-1", "is-2"]

    def test_pull_is_idempotent(self, alice, bob):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        manager_for(alice).commit()
        mgr = manager_for(bob)
        mgr.pull()
        before = (Path(bob.working_tree_dir) / RECORDS).read_bytes()

        again = mgr.pull()

        assert again.pulled
        assert not again.merged and not again.fast_forwarded and not again.pushed
        assert (Path(bob.working_tree_dir) / RECORDS).read_bytes() == before

    def test_pull_fast_forwards(self, alice, bob):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()

        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        mgr_a.commit()
        result = mgr_b.pull()

        assert result.fast_forwarded
        assert sorted(primary_records(bob)) == ["is-1", "is-2"]

    def test_pull_before_anyone_pushed(self, bob):
        result = manager_for(bob).pull()
        assert not result.pulled

    def test_pull_hands_result_to_store(self, alice, bob):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        manager_for(alice).commit()
        store = InMemoryRecordStore()

        manager_for(bob, store=store).pull()

        assert store.replaced == [jsonl(make_record("is-1"))]

    def test_diverged_pull_merges_both_sides(self, alice, bob, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()

        write_records(bob.working_tree_dir, [make_record("is-1"), make_record("is-2"), make_record("is-4")])
        mgr_b.commit(push=False)
        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2"), make_record("is-3")])
        mgr_a.commit()

        result = mgr_b.pull()

        assert result.merged and result.pushed
        assert not result.safety_check_triggered
        assert sorted(primary_records(bob)) == ["is-1", "is-2", "is-3", "is-4"]
        tip_message = Repo(remote_repo).heads["issues-sync"].commit.message
        assert tip_message.startswith(
            "issuesync: merge divergent histories (1 local + 1 remote commits)"
        )

        followup = mgr_a.pull()
        assert followup.fast_forwarded
        assert sorted(primary_records(alice)) == ["is-1", "is-2", "is-3", "is-4"]

    def test_conflicting_diverged_pull_leaves_local_state(self, alice, bob):
        mgr_a, _ = conflicting_titles(alice, bob)
        primary_before = (Path(alice.working_tree_dir) / RECORDS).read_bytes()
        head_before = worktree_head(mgr_a)

        with pytest.raises(DivergenceRecoveryError) as excinfo:
            mgr_a.pull()

        message = str(excinfo.value)
        assert message.startswith("Pull of sync branch 'issues-sync'")
        assert "issuesync reset-remote" in message
        assert "issuesync force-push" in message
        assert "issuesync resolve --strategy" in message
        assert "is-1.title" in message
        assert (Path(alice.working_tree_dir) / RECORDS).read_bytes() == primary_before
        assert worktree_head(mgr_a) == head_before
        state = load_conflict_state(mgr_a.primary_data_dir)
        assert state.operation == "pull"
        assert state.local_commit == head_before
        assert [c.field for c in state.conflicts] == ["title"]

    def test_deleted_record_is_not_resurrected(self, alice, bob, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()

        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr_a.commit()
        # bob edits the record alice just deleted, then commits
        write_records(bob.working_tree_dir, [make_record("is-1"), make_record("is-2", title="edited")])
        mgr_b.commit()
        mgr_b.pull()

        assert sorted(remote_records(remote_repo)) == ["is-1"]
        assert sorted(primary_records(bob)) == ["is-1"]

    def test_commit_after_remote_moved_keeps_remote_records(self, alice, bob, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()

        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        mgr_a.commit()
        write_records(bob.working_tree_dir, [make_record("is-1"), make_record("is-3")])
        result = mgr_b.commit()

        assert result.pushed
        assert sorted(remote_records(remote_repo)) == ["is-1", "is-2", "is-3"]

    def test_mass_deletion_withholds_push_when_confirmation_required(self, alice, bob, remote_repo):
        many = [make_record(f"is-{i}") for i in range(8)]
        write_records(alice.working_tree_dir, many)
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob, make_config(require_confirmation_on_mass_delete=True))
        mgr_b.pull()

        write_records(bob.working_tree_dir, many + [make_record("is-9")])
        mgr_b.commit(push=False)
        write_records(alice.working_tree_dir, many[:1])
        mgr_a.commit()
        tip = remote_tip(remote_repo)

        result = mgr_b.pull()

        assert result.merged
        assert result.safety_check_triggered
        assert result.safety_check_details == "78% of records vanished during merge (9 -> 2 records)"
        assert not result.pushed
        assert any("Push skipped" in w for w in result.safety_warnings)
        assert any(w.startswith("Mass deletion forensic log") for w in result.safety_warnings)
        assert remote_tip(remote_repo) == tip
        assert sorted(primary_records(bob)) == ["is-0", "is-9"]

    def test_mass_deletion_warns_but_pushes_by_default(self, alice, bob, remote_repo):
        many = [make_record(f"is-{i}") for i in range(8)]
        write_records(alice.working_tree_dir, many)
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()

        write_records(bob.working_tree_dir, many + [make_record("is-9")])
        mgr_b.commit(push=False)
        write_records(alice.working_tree_dir, many[:1])
        mgr_a.commit()

        result = mgr_b.pull()

        assert result.safety_check_triggered
        assert result.pushed
        assert any("git reflog issues-sync" in w for w in result.safety_warnings)
        assert sorted(remote_records(remote_repo)) == ["is-0", "is-9"]


class TestPush:
    def test_concurrent_writers_recover_with_one_merge(self, alice, bob, remote_repo, monkeypatch):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()

        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        mgr_a.commit(push=False)
        write_records(bob.working_tree_dir, [make_record("is-1"), make_record("is-3")])
        mgr_b.commit()

        recoveries = []
        original = mgr_a._recover_divergence

        def counting(*args, **kwargs):
            recoveries.append(args)
            return original(*args, **kwargs)

        monkeypatch.setattr(mgr_a, "_recover_divergence", counting)
        mgr_a.push()

        assert len(recoveries) == 1
        assert sorted(remote_records(remote_repo)) == ["is-1", "is-2", "is-3"]
        assert sorted(primary_records(alice)) == ["is-1", "is-2", "is-3"]
        # the next commit starts from the merged file
        write_records(alice.working_tree_dir, [*primary_records(alice).values(), make_record("is-4")])
        assert mgr_a.commit().pushed
        assert sorted(remote_records(remote_repo)) == ["is-1", "is-2", "is-3", "is-4"]
        assert mgr_b.pull().fast_forwarded
        assert sorted(primary_records(bob)) == ["is-1", "is-2", "is-3", "is-4"]

    def test_conflicting_edits_raise_recovery_error(self, alice, bob):
        mgr_a, _ = conflicting_titles(alice, bob)

        with pytest.raises(DivergenceRecoveryError) as excinfo:
            mgr_a.push()

        message = str(excinfo.value)
        assert "issuesync reset-remote" in message
        assert "issuesync force-push" in message
        assert "is-1.title" in message
        state = load_conflict_state(mgr_a.primary_data_dir)
        assert state.operation == "push"
        assert state.record_ids == ["is-1"]
        assert mgr_a.status().pending_conflicts == [state.conflicts[0].reason]

    def test_rejected_push_is_answered_with_one_content_merge(self, alice, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        transport = FakeTransport()
        mgr = manager_for(alice, transport=transport)
        mgr.commit()
        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        mgr.commit(push=False)
        # a rejection the remote tip does not explain still goes through recovery
        transport.script("push", non_fast_forward_error())
        pushes = transport.count("push")

        mgr.push()

        assert transport.count("push") - pushes == 2
        assert sorted(remote_records(remote_repo)) == ["is-1", "is-2"]
        tip = Repo(remote_repo).heads["issues-sync"].commit
        assert tip.message.startswith("issuesync: merge divergent histories (content-level recovery)")
        assert sorted(primary_records(alice)) == ["is-1", "is-2"]

    def test_transient_failures_exhaust_retries(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        transport = FakeTransport()
        transport.script("push", *[network_error() for _ in range(5)])
        sleeps = []
        mgr = manager_for(alice, make_config(backoff_base=0.1), transport=transport, sleep=sleeps.append)

        with pytest.raises(GitPushError) as excinfo:
            mgr.commit()

        assert transport.count("push") == 5
        assert sleeps == pytest.approx([0.1, 0.2, 0.4, 0.8])
        assert "after 5 attempts" in str(excinfo.value)
        assert "could not resolve host" in str(excinfo.value).lower()

    def test_transient_failure_then_success(self, alice, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        transport = FakeTransport()
        transport.script("push", network_error())
        sleeps = []
        mgr = manager_for(alice, make_config(backoff_base=0.5), transport=transport, sleep=sleeps.append)

        assert mgr.commit().pushed
        assert sleeps == [0.5]
        assert "is-1" in remote_records(remote_repo)

    def test_push_wait_notice(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        notices = []
        mgr = manager_for(alice, make_config(push_wait_notice=0.001), notify=notices.append)
        # slow the push down so the notice fires first
        original = mgr.transport.push

        def slow_push(*args, **kwargs):
            time.sleep(0.2)
            return original(*args, **kwargs)

        mgr.transport.push = slow_push
        mgr.commit()

        assert notices and "waiting" in notices[0]

    @pytest.mark.parametrize(
        "text,expected",
        [
            (" ! [rejected]  b -> b (fetch first)", True),
            (" ! [rejected]  b -> b (non-fast-forward)", True),
            ("Updates were rejected because the tip of your current branch is behind", True),
            ("fatal: could not read from remote repository", False),
        ],
    )
    def test_non_fast_forward_detection(self, text, expected):
        assert is_non_fast_forward(text) is expected


class TestRecovery:
    def _diverge(self, alice, bob):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr_a = manager_for(alice)
        mgr_a.commit()
        mgr_b = manager_for(bob)
        mgr_b.pull()
        write_records(bob.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        mgr_b.commit(push=False)
        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-3")])
        mgr_a.commit()
        return mgr_a, mgr_b

    def test_check_divergence(self, alice, bob):
        _, mgr_b = self._diverge(alice, bob)

        info = mgr_b.check_divergence()

        assert (info.local_ahead, info.remote_ahead) == (1, 1)
        assert info.is_diverged and not info.is_significant
        assert info.worktree == str(mgr_b.worktree_path)

    def test_reset_to_remote_discards_local_commits(self, alice, bob):
        _, mgr_b = self._diverge(alice, bob)

        discarded = mgr_b.reset_to_remote()

        assert discarded == 1
        assert sorted(primary_records(bob)) == ["is-1", "is-3"]
        assert mgr_b.check_divergence().local_ahead == 0

    def test_force_push_overwrites_remote(self, alice, bob, remote_repo):
        _, mgr_b = self._diverge(alice, bob)

        mgr_b.force_push()

        assert sorted(remote_records(remote_repo)) == ["is-1", "is-2"]


class TestInPlaceAndStatus:
    def test_sync_branch_checked_out_falls_back_to_in_place(self, alice, remote_repo):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(alice, make_config(branch="main"))

        with pytest.raises(SameBranchError):
            mgr.commit()
        result = mgr.commit_in_place(message="sync issues")

        assert result.committed and result.pushed
        assert "is-1" in remote_records(remote_repo, branch="main")
        assert remote_tip(remote_repo, "main") == alice.head.commit.hexsha
        assert not mgr.commit_in_place().committed

    def test_status_compares_branches(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(alice)

        before = mgr.status()
        assert not before.branch_exists
        assert before.file_differs

        mgr.commit()
        after = mgr.status()

        assert after.branch_exists
        assert after.current_branch == "main"
        assert len(after.sync_only_commits) == 2
        assert after.current_only_commits
        assert not after.file_differs

        write_records(alice.working_tree_dir, [make_record("is-1"), make_record("is-2")])
        assert mgr.status().file_differs


class TestResolveConflicts:
    def test_nothing_pending(self, alice):
        result = manager_for(alice).resolve_conflicts("theirs")
        assert not result.record_ids and not result.resolved

    def test_dry_run_keeps_state(self, alice, bob):
        mgr_a, _ = conflicting_titles(alice, bob)
        with pytest.raises(DivergenceRecoveryError):
            mgr_a.push()

        result = mgr_a.resolve_conflicts("ours", dry_run=True)

        assert result.dry_run and result.record_ids == ["is-1"]
        assert not result.resolved
        assert load_conflict_state(mgr_a.primary_data_dir).record_ids == ["is-1"]

    def test_manual_strategy_cannot_resolve(self, alice, bob):
        mgr_a, _ = conflicting_titles(alice, bob)
        with pytest.raises(DivergenceRecoveryError):
            mgr_a.push()

        with pytest.raises(ValueError):
            mgr_a.resolve_conflicts()

    def test_theirs_adopts_remote_record(self, alice, bob, remote_repo):
        mgr_a, _ = conflicting_titles(alice, bob)
        with pytest.raises(DivergenceRecoveryError):
            mgr_a.push()

        result = mgr_a.resolve_conflicts("theirs")

        assert result.resolved and result.winners == {"is-1": "remote"}
        assert not result.pushed
        assert primary_records(alice)["is-1"]["title"] == "Z"
        assert remote_records(remote_repo)["is-1"]["title"] == "Z"
        assert load_conflict_state(mgr_a.primary_data_dir).conflicts == []
        assert mgr_a.check_divergence().local_ahead == 0

    def test_ours_pushes_local_record(self, alice, bob, remote_repo):
        mgr_a, mgr_b = conflicting_titles(alice, bob)
        with pytest.raises(DivergenceRecoveryError):
            mgr_a.push()

        result = mgr_a.resolve_conflicts("ours")

        assert result.winners == {"is-1": "local"}
        assert result.pushed
        assert remote_records(remote_repo)["is-1"]["title"] == "Y"
        assert mgr_b.pull().fast_forwarded
        assert primary_records(bob)["is-1"]["title"] == "Y"

    def test_pull_conflict_resolves_with_config_strategy(self, alice, bob, remote_repo):
        mgr_a, _ = conflicting_titles(alice, bob)
        with pytest.raises(DivergenceRecoveryError):
            mgr_a.pull()
        mgr = manager_for(alice, IssueSyncConfig.model_validate({
            "sync": {"push_wait_notice": 0, "backoff_base": 0},
            "conflict": {"strategy": "theirs"},
        }))

        result = mgr.resolve_conflicts()

        assert result.strategy == "theirs"
        assert primary_records(alice)["is-1"]["title"] == "Z"
        assert mgr.pull().pulled
        assert mgr.status().pending_conflicts == []


class TestMergeIntoCurrent:
    def test_dry_run_lists_commits(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(alice)
        mgr.commit()
        head = alice.head.commit.hexsha

        result = mgr.merge_into_current(dry_run=True)

        assert result.into == "main"
        assert len(result.commits) == 2
        assert not result.merged
        assert alice.head.commit.hexsha == head

    def test_merges_sync_branch(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(alice)
        mgr.commit()

        result = mgr.merge_into_current()

        assert result.merged
        assert alice.head.commit.message.strip() == "Merge sync branch 'issues-sync'"
        assert alice.git.ls_files(RECORDS) == RECORDS
        assert mgr.merge_into_current(dry_run=True).commits == []

    def test_refuses_uncommitted_changes(self, alice):
        write_records(alice.working_tree_dir, [make_record("is-1")])
        mgr = manager_for(alice)
        mgr.commit()
        (Path(alice.working_tree_dir) / "README.md").write_text("edited\n")

        with pytest.raises(SyncEnvironmentError, match="uncommitted changes"):
            mgr.merge_into_current()

    def test_requires_sync_branch(self, alice):
        with pytest.raises(SyncEnvironmentError, match="does not exist"):
            manager_for(alice).merge_into_current(dry_run=True)

    def test_sync_branch_checked_out(self, alice):
        with pytest.raises(SameBranchError):
            manager_for(alice, make_config(branch="main")).merge_into_current()
