"""
Unit tests for configuration loader.

Tests multi-layer config merging, environment variable overrides,
caching, legacy keys and layered .env files.
"""

import os

import pytest
from pydantic import ValidationError

from worklog.core.config import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    load_config,
    load_layered_env,
)
from worklog.core.config.loader import (
    apply_env_overrides,
    deep_merge,
    get_default_config,
    load_yaml_file,
)
from worklog.core.config.models import WorklogConfig

# ==============================================================================
# Helper Functions Tests
# ==============================================================================


class TestDeepMerge:
    """Test the deep_merge helper function."""

    def test_simple_merge(self):
        """Override values replace base values."""
        assert deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_merge(self):
        """Nested dicts are merged, not replaced."""
        base = {"sync": {"remote": "origin", "ref": "refs/worklog/data"}}
        override = {"sync": {"ref": "refs/team/data"}}

        assert deep_merge(base, override) == {
            "sync": {"remote": "origin", "ref": "refs/team/data"}
        }

    def test_base_not_mutated(self):
        """The base dict is left unchanged."""
        base = {"a": {"x": 1}}
        deep_merge(base, {"a": {"y": 2}})

        assert base == {"a": {"x": 1}}


class TestLoadYamlFile:
    """Test YAML layer loading."""

    def test_missing_file(self, tmp_path):
        """Missing files load as None."""
        assert load_yaml_file(tmp_path / "nope.yaml") is None

    def test_snake_case_keys_normalized(self, tmp_path):
        """snake_case keys become camelCase so layers merge by key."""
        path = tmp_path / "config.yaml"
        path.write_text("sync_remote: upstream\nautoSync: true\n")

        assert load_yaml_file(path) == {"syncRemote": "upstream", "autoSync": True}

    def test_empty_file(self, tmp_path):
        """An empty file is an empty layer."""
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_yaml_file(path) == {}

    def test_invalid_yaml_skipped(self, tmp_path, caplog):
        """Unparseable YAML is skipped with a warning."""
        path = tmp_path / "config.yaml"
        path.write_text("syncRemote: [unclosed\n")

        assert load_yaml_file(path) is None
        assert "Failed to parse config" in caplog.text

    def test_non_mapping_skipped(self, tmp_path):
        """A YAML list is not a config layer."""
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        assert load_yaml_file(path) is None


# ==============================================================================
# Environment Overrides
# ==============================================================================


class TestEnvOverrides:
    """Test WORKLOG_* environment variable overrides."""

    def test_remote_and_ref(self, monkeypatch):
        """Remote and ref can be overridden."""
        monkeypatch.setenv("WORKLOG_SYNC_REMOTE", "upstream")
        monkeypatch.setenv("WORKLOG_SYNC_REF", "refs/team/data")

        result = apply_env_overrides({"syncRemote": "origin", "syncBranch": "old"})

        assert result["syncRemote"] == "upstream"
        assert result["syncRef"] == "refs/team/data"
        assert "syncBranch" not in result

    @pytest.mark.parametrize(
        "value,expected",
        [("1", True), ("true", True), ("yes", True), ("0", False), ("false", False), ("off", False)],
    )
    def test_auto_sync(self, monkeypatch, value, expected):
        """WORKLOG_AUTO_SYNC accepts the usual boolean spellings."""
        monkeypatch.setenv("WORKLOG_AUTO_SYNC", value)

        assert apply_env_overrides({})["autoSync"] is expected

    def test_max_retries(self, monkeypatch):
        """A valid retry count is applied."""
        monkeypatch.setenv("WORKLOG_SYNC_MAX_RETRIES", "5")

        assert apply_env_overrides({})["syncMaxRetries"] == 5

    @pytest.mark.parametrize("value", ["many", "0", "-2"])
    def test_invalid_max_retries_ignored(self, monkeypatch, value):
        """Invalid retry counts are ignored."""
        monkeypatch.setenv("WORKLOG_SYNC_MAX_RETRIES", value)

        assert "syncMaxRetries" not in apply_env_overrides({})


# ==============================================================================
# load_config
# ==============================================================================


class TestLoadConfig:
    """Test the full layered load."""

    def test_defaults(self, tmp_path):
        """With no files, defaults apply."""
        config = load_config(tmp_path)

        assert config.sync_remote == "origin"
        assert config.sync_ref == "refs/worklog/data"
        assert config.auto_sync is False
        assert config.sync_max_retries == 3
        assert config.data_file == ".worklog/worklog-data.jsonl"

    def test_default_config_uses_wire_names(self):
        """Hardcoded defaults are keyed by camelCase names."""
        defaults = get_default_config()

        assert defaults["syncRemote"] == "origin"
        assert "sync_remote" not in defaults

    def test_layer_precedence(self, tmp_path):
        """user < project defaults < project config < env."""
        user = get_user_config_path()
        user.parent.mkdir(parents=True)
        user.write_text("syncRemote: user-remote\nautoSync: true\nprojectName: mine\n")
        defaults = tmp_path / ".worklog" / "config.defaults.yaml"
        defaults.parent.mkdir(parents=True)
        defaults.write_text("syncRemote: team-remote\nautoSyncDelay: 5\n")
        get_project_config_path(tmp_path).write_text("autoSyncDelay: 1.5\n")

        config = load_config(tmp_path)

        assert config.sync_remote == "team-remote"
        assert config.auto_sync is True
        assert config.auto_sync_delay == 1.5
        assert config.project_name == "mine"

    def test_env_beats_files(self, tmp_path, monkeypatch):
        """Environment variables override every file layer."""
        path = get_project_config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("syncRemote: from-file\n")
        monkeypatch.setenv("WORKLOG_SYNC_REMOTE", "from-env")

        assert load_config(tmp_path).sync_remote == "from-env"

    def test_legacy_sync_branch(self, tmp_path):
        """syncBranch is read as syncRef."""
        path = get_project_config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("syncBranch: worklog-data\n")

        config = load_config(tmp_path)

        assert config.sync_ref == "worklog-data"
        assert config.sync_target.full_ref == "refs/heads/worklog-data"

    def test_sync_ref_beats_legacy_key(self, tmp_path):
        """When both are given, syncRef wins."""
        path = get_project_config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("syncBranch: old\nsyncRef: refs/team/data\n")

        assert load_config(tmp_path).sync_ref == "refs/team/data"

    def test_invalid_value_raises(self, tmp_path):
        """Values failing validation raise."""
        path = get_project_config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("syncMaxRetries: 0\n")

        with pytest.raises(ValidationError):
            load_config(tmp_path)

    def test_caching(self, tmp_path):
        """Loads are cached per project until clear_cache()."""
        path = get_project_config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("syncRemote: first\n")
        first = load_config(tmp_path)

        path.write_text("syncRemote: second\n")
        assert load_config(tmp_path) is first
        assert load_config(tmp_path, use_cache=False).sync_remote == "second"

        clear_cache()
        assert load_config(tmp_path).sync_remote == "second"


class TestWorklogConfig:
    """Test the config model directly."""

    def test_snake_and_camel(self):
        """Both spellings populate fields."""
        assert WorklogConfig(sync_remote="a").sync_remote == "a"
        assert WorklogConfig(syncRemote="b").sync_remote == "b"

    def test_unknown_keys_ignored(self):
        """Keys for other tools are ignored."""
        config = WorklogConfig.model_validate({"githubRepo": "x/y"})

        assert not hasattr(config, "githubRepo")

    def test_delay_must_be_positive(self):
        """autoSyncDelay must be greater than zero."""
        with pytest.raises(ValidationError):
            WorklogConfig(autoSyncDelay=0)

    def test_sync_target(self):
        """sync_target combines remote and ref."""
        target = WorklogConfig(syncRemote="upstream", syncRef="refs/x/y").sync_target

        assert target.describe() == "upstream refs/x/y"


# ==============================================================================
# Layered .env files
# ==============================================================================


class TestLayeredEnv:
    """Test load_layered_env()."""

    def test_project_overrides_user(self, tmp_path, monkeypatch):
        """Project .env wins over user .env."""
        monkeypatch.setenv("WORKLOG_TEST_VALUE", "")
        monkeypatch.delenv("WORKLOG_TEST_VALUE")
        user_env = tmp_path / "user.env"
        user_env.write_text("WORKLOG_TEST_VALUE=user\n")
        project_env = tmp_path / "project.env"
        project_env.write_text("WORKLOG_TEST_VALUE=project\n")

        keys = load_layered_env(user_env_paths=[user_env], project_env_paths=[project_env])

        assert os.environ["WORKLOG_TEST_VALUE"] == "project"
        assert keys == {"WORKLOG_TEST_VALUE"}

    def test_shell_env_wins(self, tmp_path, monkeypatch):
        """Variables already exported are never overridden."""
        monkeypatch.setenv("WORKLOG_TEST_VALUE", "shell")
        project_env = tmp_path / "project.env"
        project_env.write_text("WORKLOG_TEST_VALUE=project\n")

        keys = load_layered_env(user_env_paths=[], project_env_paths=[project_env])

        assert os.environ["WORKLOG_TEST_VALUE"] == "shell"
        assert keys == set()

    def test_default_paths(self, tmp_path, monkeypatch):
        """Without explicit paths, .env and .worklog/.env in the project are read."""
        monkeypatch.setenv("WORKLOG_SYNC_REMOTE", "")
        monkeypatch.delenv("WORKLOG_SYNC_REMOTE")
        (tmp_path / ".worklog").mkdir()
        (tmp_path / ".worklog" / ".env").write_text("WORKLOG_SYNC_REMOTE=dotenv-remote\n")

        load_layered_env(project_dir=tmp_path)

        assert os.environ["WORKLOG_SYNC_REMOTE"] == "dotenv-remote"
        assert load_config(tmp_path).sync_remote == "dotenv-remote"

    def test_only_worklog_variables(self, tmp_path, monkeypatch):
        """Other variables in a project .env are left alone."""
        monkeypatch.setenv("WORKLOG_SYNC_REF", "")
        monkeypatch.delenv("WORKLOG_SYNC_REF")
        monkeypatch.setenv("APP_SECRET_TOKEN", "")
        monkeypatch.delenv("APP_SECRET_TOKEN")
        project_env = tmp_path / ".env"
        project_env.write_text("APP_SECRET_TOKEN=hunter2\nWORKLOG_SYNC_REF=refs/team/data\n")

        keys = load_layered_env(user_env_paths=[], project_env_paths=[project_env])

        assert keys == {"WORKLOG_SYNC_REF"}
        assert "APP_SECRET_TOKEN" not in os.environ

    def test_worklog_dir_env_beats_project_root(self, tmp_path, monkeypatch):
        """.worklog/.env overrides the project root .env."""
        monkeypatch.setenv("WORKLOG_SYNC_REMOTE", "")
        monkeypatch.delenv("WORKLOG_SYNC_REMOTE")
        (tmp_path / ".env").write_text("WORKLOG_SYNC_REMOTE=root\n")
        (tmp_path / ".worklog").mkdir()
        (tmp_path / ".worklog" / ".env").write_text("WORKLOG_SYNC_REMOTE=worklog-dir\n")

        load_layered_env(project_dir=tmp_path)

        assert os.environ["WORKLOG_SYNC_REMOTE"] == "worklog-dir"


def test_xdg_user_config_path(tmp_path):
    """The user config lives under XDG_CONFIG_HOME."""
    assert get_user_config_path() == tmp_path / "xdg" / "worklog" / "config.yaml"
