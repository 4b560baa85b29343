"""Configuration loading and merging for issuesync.

Handles TOML loading, config discovery, deep merging, and environment overlay.
"""

from __future__ import annotations

import os
import sys
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

# TOML loading: tomllib (3.11+) with tomli fallback
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from .config_schema import IssueSyncConfig


CONFIG_FILENAME = "config.toml"

USER_CONFIG_DIR = ".issuesync"
PROJECT_CONFIG_DIR = ".issuesync"

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    "ISSUESYNC_SYNC_MODE": (["sync"], "mode"),
    "ISSUESYNC_SYNC_BRANCH": (["sync"], "branch"),
    "ISSUESYNC_SYNC_REMOTE": (["sync"], "remote"),
    "ISSUESYNC_DATA_DIR": (["sync"], "data_dir"),
    "ISSUESYNC_SYNC_MAX_RETRIES": (["sync"], "max_retries"),
    "ISSUESYNC_SYNC_BACKOFF_BASE": (["sync"], "backoff_base"),
    "ISSUESYNC_GIT_TIMEOUT": (["sync"], "git_timeout"),
    "ISSUESYNC_REQUIRE_MASS_DELETE_CONFIRMATION": (["sync"], "require_confirmation_on_mass_delete"),
    "ISSUESYNC_CONFLICT_STRATEGY": (["conflict"], "strategy"),
    "ISSUESYNC_GIT_AUTHOR": (["git"], "author"),
    "ISSUESYNC_GIT_EMAIL": (["git"], "email"),
    "ISSUESYNC_GIT_ALLOW_PROMPTS": (["git"], "allow_prompts"),
    "ISSUESYNC_LOG_LEVEL": (["logging"], "level"),
    "ISSUESYNC_LOG_DIR": (["logging"], "dir"),
    "ISSUESYNC_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.issuesync/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Get project-level config directory (.issuesync/).

    Searches upward from project_path to find .issuesync/ directory.
    """
    if project_path is None:
        project_path = Path.cwd()

    if not project_path.is_absolute():
        project_path = project_path.resolve()

    current = project_path
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir() and config_dir != _get_user_config_dir():
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict.

    Environment variables have highest priority after CLI args.
    """
    result = _deep_merge({}, config_dict)

    for env_var, (section_path, key_name) in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is None or value == "":
            continue

        current = result
        for section in section_path:
            current = current.setdefault(section, {})

        # Type conversion happens during Pydantic validation
        current[key_name] = value

    return result


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> IssueSyncConfig:
    """Load and merge issuesync configuration.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. User config (~/.issuesync/config.toml)
    3. Project config (.issuesync/config.toml)
    4. Environment variables (unless skip_env=True)

    Raises:
        ConfigError: If the project config or the merged result is invalid
    """
    config_dict: Dict[str, Any] = {}

    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(user_config_path))
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    project_config_dir = _get_project_config_dir(project_path)
    if project_config_dir:
        project_config_path = project_config_dir / CONFIG_FILENAME
        if project_config_path.exists():
            try:
                config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
            except ConfigError as e:
                raise ConfigError(f"Invalid project config: {e}")

    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    try:
        return IssueSyncConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Get paths to the user and project config files."""
    project_dir = _get_project_config_dir(project_path)
    return {
        "user_config": _get_user_config_dir() / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir else None,
    }
