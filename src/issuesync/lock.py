from __future__ import annotations

import getpass
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path


class AdvisoryLock:
    """File-based advisory lock guarding one sync worktree.

    Commit and pull against the same worktree must not interleave inside one
    replica; the CLI holds this lock for the whole operation. The lock file
    sits next to the worktree directory (``<worktree>.lock``).

    Environment variables (optional):
    - ISSUESYNC_LOCK_TTL: seconds after which a lock is considered stale
    - ISSUESYNC_LOCK_POLL: polling interval in seconds while waiting
    """

    def __init__(self, path: Path, *, ttl: int | None = None, timeout: float | None = None,
                 force_break: bool = False):
        self.path = Path(path)
        self.ttl = ttl if ttl is not None else int(os.getenv("ISSUESYNC_LOCK_TTL", "900"))
        self.poll = float(os.getenv("ISSUESYNC_LOCK_POLL", "0.1"))
        self.timeout = timeout
        self.force_break = force_break
        self.acquired = False

    @classmethod
    def for_worktree(cls, worktree_path: Path, **kwargs) -> "AdvisoryLock":
        worktree_path = Path(worktree_path)
        return cls(worktree_path.parent / f"{worktree_path.name}.lock", **kwargs)

    def _is_stale(self) -> bool:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        if self.ttl > 0 and (time.time() - mtime) > self.ttl:
            return True
        pid = self._pid_of_lock()
        return pid is not None and not _pid_alive(pid)

    def _write_pid(self) -> None:
        try:
            user = getpass.getuser()
        except Exception:
            user = "unknown"
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self.path.write_text(
            f"pid={os.getpid()} time={timestamp} user={user}\n",
            encoding="utf-8",
        )

    def _pid_of_lock(self) -> int | None:
        info = self.get_lock_info()
        if not info:
            return None
        pid = info.get("pid")
        return pid if isinstance(pid, int) else None

    def get_lock_info(self) -> dict | None:
        """Return lock metadata (pid, time, user) or None if unlocked."""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, OSError):
            return None
        if not content:
            return None
        info: dict = {}
        for part in content.split():
            if "=" in part:
                key, value = part.split("=", 1)
                info[key] = value
        if "pid" in info:
            try:
                info["pid"] = int(info["pid"])
            except ValueError:
                pass
        return info or None

    def acquire(self) -> bool:
        start = time.time()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.close(fd)
                self._write_pid()
                self.acquired = True
                return True
            except FileExistsError:
                if self.force_break or self._is_stale():
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if self.timeout == 0:
                    return False
                if self.timeout is not None and (time.time() - start) >= self.timeout:
                    return False
                time.sleep(self.poll)

    def release(self) -> None:
        if self.acquired:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            self.acquired = False

    def __enter__(self):
        if not self.acquire():
            holder = self.get_lock_info() or {}
            raise TimeoutError(
                f"Another issuesync operation holds {self.path} (pid={holder.get('pid', '?')})"
            )
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    # os.kill(pid, 0) terminates the process on Windows
    if sys.platform == "win32":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return True
    return True
