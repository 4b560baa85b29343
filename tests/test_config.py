"""Tests for config loading, merging and schema validation."""

from __future__ import annotations

import warnings

import pytest

from issuesync.config_loader import (
    ConfigError,
    _deep_merge,
    _get_project_config_dir,
    get_config_paths,
    load_config,
)
from issuesync.config_schema import ConflictStrategy, IssueSyncConfig, SyncConfig, SyncMode
from issuesync.testing import mock_env_vars


def write_config(directory, body: str):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "config.toml"
    path.write_text(body)
    return path


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_merge(self):
        """Nested dict merge."""
        base = {"outer": {"a": 1, "b": 2}}
        override = {"outer": {"b": 3, "c": 4}}
        assert _deep_merge(base, override) == {"outer": {"a": 1, "b": 3, "c": 4}}

    def test_list_replacement(self):
        """Lists are replaced, not merged."""
        assert _deep_merge({"items": [1, 2]}, {"items": [3]}) == {"items": [3]}

    def test_base_unchanged(self):
        base = {"a": 1}
        _deep_merge(base, {"a": 2})
        assert base == {"a": 1}


class TestDefaults:
    def test_default_values(self):
        config = IssueSyncConfig.default()
        assert config.sync.mode is SyncMode.GIT_PORTABLE
        assert config.sync.branch == "issues-sync"
        assert config.sync.records_rel_path == ".issues/issues.jsonl"
        assert config.sync.max_retries == 5
        assert config.sync.require_confirmation_on_mass_delete is False
        assert config.conflict.strategy is ConflictStrategy.MANUAL

    def test_mode_capabilities(self):
        assert SyncMode.GIT_PORTABLE.exports_on_push
        assert SyncMode.REALTIME.exports_on_change
        assert not SyncMode.DOLT_NATIVE.uses_sync_branch
        assert SyncMode.BELT_AND_SUSPENDERS.uses_native_remote
        assert SyncMode.BELT_AND_SUSPENDERS.uses_sync_branch


class TestSchemaValidation:
    def test_invalid_strategy_falls_back_with_warning(self):
        with pytest.warns(UserWarning, match="conflict.strategy"):
            config = IssueSyncConfig.model_validate({"conflict": {"strategy": "loudest"}})
        assert config.conflict.strategy is ConflictStrategy.MANUAL

    def test_mode_is_case_insensitive(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            config = SyncConfig(mode="  RealTime ")
        assert config.mode is SyncMode.REALTIME

    @pytest.mark.parametrize("branch", ["", "-x", "a..b", "has space"])
    def test_bad_branch_names_rejected(self, branch):
        with pytest.raises(ValueError):
            SyncConfig(branch=branch)

    @pytest.mark.parametrize("data_dir", ["", ".", "../up", "a/../../b"])
    def test_data_dir_must_be_relative(self, data_dir):
        with pytest.raises(ValueError):
            SyncConfig(data_dir=data_dir)

    def test_data_dir_normalized(self):
        assert SyncConfig(data_dir="beads\\data/").records_rel_path == "beads/data/issues.jsonl"

    def test_log_level_normalized(self):
        config = IssueSyncConfig.model_validate({"logging": {"level": "debug"}})
        assert config.logging.level == "DEBUG"


class TestLoadConfig:
    def test_no_files_gives_defaults(self, tmp_path):
        config = load_config(tmp_path, skip_env=True)
        assert config.sync.branch == "issues-sync"

    def test_project_overrides_user(self, tmp_path, isolated_home):
        write_config(isolated_home / ".issuesync", '[sync]\nbranch = "user-branch"\nmax_retries = 9\n')
        project = tmp_path / "project"
        write_config(project / ".issuesync", '[sync]\nbranch = "project-branch"\n')

        config = load_config(project / "sub" / "dir", skip_env=True)

        assert config.sync.branch == "project-branch"
        assert config.sync.max_retries == 9

    def test_project_dir_found_upwards(self, tmp_path):
        project = tmp_path / "project"
        (project / ".issuesync").mkdir(parents=True)
        nested = project / "a" / "b"
        nested.mkdir(parents=True)
        assert _get_project_config_dir(nested) == project / ".issuesync"

    def test_env_overrides_files(self, tmp_path):
        write_config(tmp_path / ".issuesync", '[conflict]\nstrategy = "ours"\n')
        with mock_env_vars(ISSUESYNC_CONFLICT_STRATEGY="theirs", ISSUESYNC_SYNC_MAX_RETRIES="2"):
            config = load_config(tmp_path)
        assert config.conflict.strategy is ConflictStrategy.THEIRS
        assert config.sync.max_retries == 2

    def test_empty_env_value_ignored(self, tmp_path):
        with mock_env_vars(ISSUESYNC_SYNC_BRANCH=""):
            config = load_config(tmp_path)
        assert config.sync.branch == "issues-sync"

    def test_invalid_project_toml_raises(self, tmp_path):
        write_config(tmp_path / ".issuesync", "[sync\nbranch = \n")
        with pytest.raises(ConfigError, match="Invalid project config"):
            load_config(tmp_path, skip_env=True)

    def test_invalid_user_toml_warns(self, tmp_path, isolated_home):
        write_config(isolated_home / ".issuesync", "not = [valid\n")
        with pytest.warns(UserWarning, match="Skipping invalid user config"):
            config = load_config(tmp_path, skip_env=True)
        assert config.sync.branch == "issues-sync"

    def test_validation_error_wrapped(self, tmp_path):
        write_config(tmp_path / ".issuesync", "[sync]\nmax_retries = 0\n")
        with pytest.raises(ConfigError, match="Config validation failed"):
            load_config(tmp_path, skip_env=True)

    def test_config_paths(self, tmp_path, isolated_home):
        (tmp_path / ".issuesync").mkdir()
        paths = get_config_paths(tmp_path)
        assert paths["user_config"] == isolated_home / ".issuesync" / "config.toml"
        assert paths["project_config"] == tmp_path / ".issuesync" / "config.toml"
