"""Configuration schema for issuesync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SyncMode(str, Enum):
    """When export and import are triggered."""

    # Export on push, import on pull (default)
    GIT_PORTABLE = "git-portable"
    # Export on every change
    REALTIME = "realtime"
    # Replicate through the storage engine's own remote; the sync branch is idle
    DOLT_NATIVE = "dolt-native"
    # Native remote plus the sync branch as a backup
    BELT_AND_SUSPENDERS = "belt-and-suspenders"

    @property
    def exports_on_push(self) -> bool:
        return self in (SyncMode.GIT_PORTABLE, SyncMode.BELT_AND_SUSPENDERS)

    @property
    def exports_on_change(self) -> bool:
        return self is SyncMode.REALTIME

    @property
    def uses_native_remote(self) -> bool:
        return self in (SyncMode.DOLT_NATIVE, SyncMode.BELT_AND_SUSPENDERS)

    @property
    def uses_sync_branch(self) -> bool:
        return self is not SyncMode.DOLT_NATIVE


class ConflictStrategy(str, Enum):
    """Tie-break hint for fields both sides changed to different values."""

    NEWEST = "newest"
    OURS = "ours"
    THEIRS = "theirs"
    MANUAL = "manual"


def _coerce_enum(enum_cls, value, default, key: str):
    if isinstance(value, enum_cls):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    normalized = str(value).strip().lower()
    try:
        return enum_cls(normalized)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        warnings.warn(
            f"invalid {key} {value!r} in config (valid: {valid}), using default '{default.value}'",
            UserWarning,
        )
        return default


class SyncConfig(BaseModel):
    """Sync branch behaviour."""

    model_config = ConfigDict(populate_by_name=True)

    mode: SyncMode = Field(
        default=SyncMode.GIT_PORTABLE,
        description="When export/import run: git-portable, realtime, dolt-native, belt-and-suspenders",
    )
    branch: str = Field(
        default="issues-sync",
        description="Dedicated branch that carries the record set",
    )
    remote: Optional[str] = Field(
        default=None,
        description="Remote name override (default: branch.<branch>.remote or origin)",
    )
    data_dir: str = Field(
        default=".issues",
        description="Directory (relative to repo root) holding the record set",
    )
    records_file: str = Field(
        default="issues.jsonl",
        description="Record set file name inside data_dir",
    )
    metadata_file: str = Field(
        default="metadata.json",
        description="Metadata file name inside data_dir (copied best-effort)",
    )
    max_retries: int = Field(
        default=5,
        ge=1,
        description="Maximum push attempts",
    )
    backoff_base: float = Field(
        default=0.1,
        ge=0,
        description="First backoff delay in seconds for transient push failures (doubles per attempt)",
    )
    push_wait_notice: float = Field(
        default=5.0,
        ge=0,
        description="Seconds before telling the user a push is still waiting (e.g. for auth)",
    )
    git_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-call timeout for git subprocesses in seconds (empty = none)",
    )
    require_confirmation_on_mass_delete: bool = Field(
        default=False,
        description="Withhold the push after a merge that removed most records",
    )

    @field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, v):
        return _coerce_enum(SyncMode, v, SyncMode.GIT_PORTABLE, "sync.mode")

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("sync.branch must not be empty")
        if v.startswith("-") or ".." in v or " " in v:
            raise ValueError(f"sync.branch is not a valid branch name: {v!r}")
        return v

    @field_validator("data_dir")
    @classmethod
    def validate_data_dir(cls, v: str) -> str:
        path = PurePosixPath(v.replace("\\", "/").strip("/"))
        if not str(path) or str(path) == "." or path.is_absolute() or ".." in path.parts:
            raise ValueError(f"sync.data_dir must be a relative directory: {v!r}")
        return str(path)

    @property
    def records_rel_path(self) -> str:
        """Records file path relative to the repository root (posix)."""
        return f"{self.data_dir}/{self.records_file}"

    @property
    def metadata_rel_path(self) -> str:
        return f"{self.data_dir}/{self.metadata_file}"


class ConflictConfig(BaseModel):
    """Content merge behaviour."""

    strategy: ConflictStrategy = Field(
        default=ConflictStrategy.MANUAL,
        description="newest, ours, theirs or manual (fail on conflicting edits)",
    )

    @field_validator("strategy", mode="before")
    @classmethod
    def validate_strategy(cls, v):
        return _coerce_enum(ConflictStrategy, v, ConflictStrategy.MANUAL, "conflict.strategy")


class GitConfig(BaseModel):
    """Git identity and process settings."""

    author: str = Field(
        default="",
        description="Commit author name for sync commits (empty = git config user.name)",
    )
    email: str = Field(
        default="",
        description="Commit author email for sync commits (empty = git config user.email)",
    )
    allow_prompts: bool = Field(
        default=False,
        description="Let git prompt for credentials instead of failing fast",
    )


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.issuesync/logs/)",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(f"Log path is not a directory: {v}", UserWarning)
        return v


class IssueSyncConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(default=1, description="Config schema version")
    sync: SyncConfig = Field(default_factory=SyncConfig)
    conflict: ConflictConfig = Field(default_factory=ConflictConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "IssueSyncConfig":
        """Create config with all defaults."""
        return cls()
