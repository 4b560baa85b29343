from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def read_bytes(p: Path) -> bytes:
    """File content, or empty bytes when the file does not exist."""
    try:
        return Path(p).read_bytes()
    except FileNotFoundError:
        return b""


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file + rename.

    Readers see either the old content or the new content, never a partial
    write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=path.suffix or ".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def copy_file_atomic(src: Path, dst: Path) -> bool:
    """Copy ``src`` over ``dst`` atomically. Returns False when ``src`` is missing."""
    src = Path(src)
    if not src.exists():
        return False
    atomic_write_bytes(Path(dst), src.read_bytes())
    return True
