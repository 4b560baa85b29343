#!/usr/bin/env python3
"""issuesync CLI - replicate the issue record set through a git branch."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"issuesync requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2
EXIT_ENVIRONMENT = 3


def _print_result(result, as_json: bool, lines: list[str]) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    for line in lines:
        print(line)


def _notify(message: str) -> None:
    print(f"⏳ {message}", file=sys.stderr)


def _build_manager(args):
    from .config_loader import load_config
    from .gitcontext import RepoContext
    from .observability import configure_logging
    from .sync_branch import SyncBranchManager

    context = RepoContext.discover(Path(args.repo) if args.repo else None)
    config = load_config(context.repo_root or context.common_dir)
    configure_logging(config.logging.level, config.logging.dir, config.logging.disable_file)
    return SyncBranchManager(context, config, notify=_notify)


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    if not sys.stdin.isatty():
        print(f"{prompt} Refusing without --yes (stdin is not a terminal).", file=sys.stderr)
        return False
    answer = input(f"{prompt} [y/N] ").strip().lower()
    return answer in ("y", "yes")


def _run_sync_command(args) -> int:
    from .errors import SameBranchError
    from .lock import AdvisoryLock

    mgr = _build_manager(args)

    if args.cmd == "status":
        status = mgr.status()
        lines = [f"Sync branch: {status.branch}"]
        if not status.branch_exists:
            lines.append("  (branch does not exist yet; run 'issuesync commit')")
        else:
            lines.append(f"  Commits on {status.branch} not on {status.current_branch}: "
                         f"{len(status.sync_only_commits)}")
            lines += [f"    {c}" for c in status.sync_only_commits]
            lines.append(f"  Commits on {status.current_branch} not on {status.branch}: "
                         f"{len(status.current_only_commits)}")
            lines += [f"    {c}" for c in status.current_only_commits]
        lines.append(f"  Record file differs from sync branch: {'yes' if status.file_differs else 'no'}")
        if status.pending_conflicts:
            lines.append(f"  Pending conflicts: {len(status.pending_conflicts)} (run 'issuesync resolve')")
            lines += [f"    {c}" for c in status.pending_conflicts]
        _print_result(status, args.as_json, lines)
        return EXIT_OK

    if args.cmd == "merge-sync":
        result = mgr.merge_into_current(dry_run=args.dry_run)
        if not result.commits:
            lines = [f"{result.into} already contains every commit on {result.branch}."]
        elif result.dry_run:
            lines = [f"Would merge {len(result.commits)} commit(s) from {result.branch} into {result.into}:"]
            lines += [f"  {c}" for c in result.commits]
        else:
            lines = [f"✅ Merged {len(result.commits)} commit(s) from {result.branch} into {result.into}"]
        _print_result(result, args.as_json, lines)
        return EXIT_OK

    with AdvisoryLock.for_worktree(mgr.worktree_path, timeout=args.lock_timeout):
        if args.cmd == "commit":
            if args.in_place:
                result = mgr.commit_in_place(push=not args.no_push, message=args.message)
            else:
                try:
                    result = mgr.commit(push=not args.no_push, message=args.message)
                except SameBranchError as exc:
                    print(f"⚠️  {exc}", file=sys.stderr)
                    print("   Committing directly on the current checkout.", file=sys.stderr)
                    result = mgr.commit_in_place(push=not args.no_push, message=args.message)
            if result.committed:
                lines = [f"✅ Committed to {result.branch}: {result.message}"]
                if result.pushed:
                    lines.append(f"✅ Pushed {result.branch}")
            else:
                lines = ["No changes to commit."]
            _print_result(result, args.as_json, lines)
            return EXIT_OK

        if args.cmd == "pull":
            result = mgr.pull(push=not args.no_push)
            for warning in result.safety_warnings:
                print(warning, file=sys.stderr)
            if not result.pulled:
                lines = [f"Remote has no '{result.branch}' branch yet; nothing to pull."]
            elif result.merged:
                lines = [f"✅ Merged divergent histories on {result.branch}"]
                if result.pushed:
                    lines.append(f"✅ Pushed {result.branch}")
            elif result.fast_forwarded:
                lines = [f"✅ Fast-forwarded {result.branch}"]
            else:
                lines = [f"{result.branch} is up to date."]
            _print_result(result, args.as_json, lines)
            return EXIT_OK

        if args.cmd == "push":
            mgr.push()
            print(f"✅ Pushed {mgr.branch}")
            return EXIT_OK

        if args.cmd == "check-divergence":
            info = mgr.check_divergence()
            if info.is_significant:
                lines = [info.recovery_guidance()]
            elif info.is_diverged:
                lines = [f"{info.branch} has diverged ({info.local_ahead} local, "
                         f"{info.remote_ahead} remote); 'issuesync pull' will merge it."]
            else:
                lines = [f"{info.branch}: {info.local_ahead} ahead, {info.remote_ahead} behind."]
            _print_result(info, args.as_json, lines)
            return EXIT_OK

        if args.cmd == "reset-remote":
            if not _confirm(f"Discard local commits on {mgr.branch} and adopt the remote?", args.yes):
                return EXIT_ERROR
            discarded = mgr.reset_to_remote()
            print(f"✅ Reset {mgr.branch} to remote ({discarded} local commit(s) discarded)")
            return EXIT_OK

        if args.cmd == "force-push":
            if not _confirm(f"Overwrite the remote {mgr.branch} with the local branch?", args.yes):
                return EXIT_ERROR
            mgr.force_push()
            print(f"✅ Force-pushed {mgr.branch}")
            return EXIT_OK

        if args.cmd == "resolve":
            result = mgr.resolve_conflicts(args.strategy, dry_run=args.dry_run, push=not args.no_push)
            if not result.record_ids:
                lines = ["No pending sync conflicts."]
            elif result.dry_run:
                lines = [f"{len(result.record_ids)} record(s) in conflict on {result.branch} "
                         f"(would resolve with '{result.strategy}'):"]
                lines += [f"  {rid}" for rid in result.record_ids]
            else:
                lines = [f"✅ Resolved {len(result.winners)} record(s) with '{result.strategy}'"]
                lines += [f"  {rid}: kept {side}" for rid, side in sorted(result.winners.items())]
                if result.pushed:
                    lines.append(f"✅ Pushed {result.branch}")
            _print_result(result, args.as_json, lines)
            return EXIT_OK

        if args.cmd == "repair-worktree":
            mgr.worktrees.remove(mgr.worktree_path)
            path = mgr.worktrees.ensure(mgr.branch, mgr.worktree_path)
            print(f"✅ Recreated sync worktree at {path}")
            return EXIT_OK

    return EXIT_ERROR


def _run_merge_driver(args) -> int:
    from .config_loader import ConfigError, load_config
    from .errors import MergeConflictError, MergeError
    from .merge import merge_files

    strategy = args.strategy
    if strategy is None:
        try:
            strategy = load_config().conflict.strategy
        except ConfigError as exc:
            print(f"❌ Config error: {exc}", file=sys.stderr)
            return EXIT_ERROR
    try:
        # git passes %O %A %B; the result replaces %A
        merge_files(Path(args.local), Path(args.base), Path(args.local), Path(args.remote),
                    strategy=strategy)
    except MergeConflictError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return EXIT_ERROR
    except MergeError as exc:
        print(f"❌ Merge failed: {exc}", file=sys.stderr)
        return EXIT_ERROR
    return EXIT_OK


def _run_config(args) -> int:
    from .config_loader import ConfigError, get_config_paths, load_config

    if args.config_cmd != "show":
        print("Usage: issuesync config show [--json] [--sources]")
        return EXIT_OK

    project_path = Path(args.project_path) if args.project_path else None
    if args.sources:
        print("Config sources (in priority order):")
        print()
        for name, path in get_config_paths(project_path).items():
            if path and path.exists():
                print(f"  ✓ {name}: {path}")
            elif path:
                print(f"  ✗ {name}: {path} (not found)")
            else:
                print(f"  - {name}: (not applicable)")
        print()
        print("Environment variables override all file configs.")
        return EXIT_OK

    try:
        config = load_config(project_path)
    except ConfigError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return EXIT_ERROR

    config_dict = config.model_dump(mode="json")
    if args.as_json:
        print(json.dumps(config_dict, indent=2))
        return EXIT_OK

    import tomlkit

    doc = tomlkit.document()
    doc.add(tomlkit.comment(" issuesync configuration (resolved)"))
    doc.add(tomlkit.nl())
    for section, values in config_dict.items():
        if isinstance(values, dict):
            table = tomlkit.table()
            for key, val in values.items():
                if val is not None:
                    table.add(key, val)
            doc.add(section, table)
        else:
            doc.add(section, values)
    print(tomlkit.dumps(doc))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="issuesync",
        description="Replicate the issue record set between collaborators through a git branch",
    )
    ap.add_argument("--repo", help="Path inside the repository (default: current directory)")
    ap.add_argument("--json", dest="as_json", action="store_true", help="Print results as JSON")
    ap.add_argument("--lock-timeout", type=float, default=30.0,
                    help="Seconds to wait for another issuesync run on this worktree (default: 30)")

    sub = ap.add_subparsers(dest="cmd")

    p_commit = sub.add_parser("commit", help="Commit the record file to the sync branch and push")
    p_commit.add_argument("-m", "--message", help="Commit message (default: issuesync: <timestamp>)")
    p_commit.add_argument("--no-push", action="store_true", help="Commit locally only")
    p_commit.add_argument("--in-place", action="store_true",
                          help="Commit directly on the current checkout instead of the sync worktree")

    p_pull = sub.add_parser("pull", help="Pull the sync branch and merge into the record file")
    p_pull.add_argument("--no-push", action="store_true", help="Do not push a merge commit")

    sub.add_parser("push", help="Push local sync commits (merging with the remote if needed)")
    sub.add_parser("status", help="Compare the sync branch with the current branch")
    sub.add_parser("check-divergence", help="Report how far local and remote sync branches drifted")

    p_reset = sub.add_parser("reset-remote", help="Discard local sync commits and adopt the remote")
    p_reset.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    p_force = sub.add_parser("force-push", help="Overwrite the remote sync branch with the local one")
    p_force.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    p_resolve = sub.add_parser("resolve", help="Finish a conflicted pull or push by keeping one side per record")
    p_resolve.add_argument("--strategy", choices=["newest", "ours", "theirs"],
                           help="Which side wins (default: conflict.strategy from config)")
    p_resolve.add_argument("--dry-run", action="store_true", help="List the conflicting records only")
    p_resolve.add_argument("--no-push", action="store_true", help="Commit the resolution locally only")

    p_merge = sub.add_parser("merge-sync", help="Merge the sync branch into the current branch")
    p_merge.add_argument("--dry-run", action="store_true", help="List the commits that would be merged")

    sub.add_parser("repair-worktree", help="Remove and recreate the sync worktree")

    p_driver = sub.add_parser("merge-driver", help="Git merge driver: issuesync merge-driver %%O %%A %%B")
    p_driver.add_argument("base", help="Common ancestor version (%%O)")
    p_driver.add_argument("local", help="Current version, replaced by the result (%%A)")
    p_driver.add_argument("remote", help="Other branch's version (%%B)")
    p_driver.add_argument("--strategy", choices=["newest", "ours", "theirs", "manual"],
                          help="Conflict strategy (default: conflict.strategy from config)")

    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")
    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--project-path", help="Project directory for config discovery")
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    return ap


def main(argv: list[str] | None = None) -> None:
    ap = build_parser()
    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(EXIT_OK)

    if args.cmd == "merge-driver":
        sys.exit(_run_merge_driver(args))

    if args.cmd == "config":
        sys.exit(_run_config(args))

    from git import GitCommandError

    from .config_loader import ConfigError
    from .errors import (
        BranchMergeError,
        DivergenceRecoveryError,
        MergeConflictError,
        SyncEnvironmentError,
        SyncError,
    )

    try:
        code = _run_sync_command(args)
    except (MergeConflictError, DivergenceRecoveryError, BranchMergeError) as exc:
        print(f"❌ {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFLICT)
    except SyncEnvironmentError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        sys.exit(EXIT_ENVIRONMENT)
    except (SyncError, ConfigError, TimeoutError, GitCommandError, ValueError) as exc:
        print(f"❌ {exc}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    sys.exit(code)


if __name__ == "__main__":
    main()
