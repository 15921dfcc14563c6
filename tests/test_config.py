"""Tests for runtime configuration and megarepo.json loading"""
import json

import pytest

from megarepo.config import Config, default_store_path
from megarepo.exceptions import ConfigError
from megarepo.models.source import LocalSource, RemoteSource
from megarepo.services.config_loader import find_workspace_root, load_config, resolve_sources


class TestConfig:
    """Test Config defaults and validation."""

    def test_store_from_environment(self, temp_dir):
        assert default_store_path() == str(temp_dir / "store")
        assert Config().store_path == str(temp_dir / "store")

    def test_store_falls_back_to_home(self, monkeypatch, temp_dir):
        monkeypatch.delenv("MEGAREPO_STORE")
        monkeypatch.setenv("HOME", str(temp_dir))
        assert default_store_path() == str(temp_dir / ".megarepo")

    def test_explicit_store_path_is_absolute(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        assert Config(store_path="relative").store_path == str(temp_dir / "relative")

    @pytest.mark.parametrize("kwargs", [
        {"workers": 0},
        {"git_protocol": "ftp"},
        {"network_timeout": 0},
        {"network_retries": -1},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            Config(**kwargs)

    def test_from_dict_ignores_unknown_keys(self):
        config = Config.from_dict({"dry_run": True, "unknown": 1})
        assert config.dry_run is True
        assert config.get("dry_run") is True
        assert config.get("missing", "x") == "x"


class TestLoadConfig:
    """Test reading megarepo.json."""

    def test_load_and_resolve(self, workspace):
        root = workspace({"effect": "effect-ts/effect#main", "tool": "./tool"})
        config = load_config(root)
        assert [m.name for m in config.member_list()] == ["effect", "tool"]

        sources = resolve_sources(root, config)
        assert isinstance(sources["effect"], RemoteSource)
        assert sources["effect"].ref == "main"
        assert isinstance(sources["tool"], LocalSource)

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigError, match="megarepo.json"):
            load_config(temp_dir)

    def test_invalid_json(self, temp_dir):
        (temp_dir / "megarepo.json").write_text("{")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_config(temp_dir)

    @pytest.mark.parametrize("members,match", [
        ({"a/b": "o/r"}, "path separators"),
        ({".hidden": "o/r"}, "dot"),
        ({"a": ""}, "non-empty source"),
    ])
    def test_invalid_members(self, temp_dir, members, match):
        (temp_dir / "megarepo.json").write_text(json.dumps({"members": members}))
        with pytest.raises(ConfigError, match=match):
            load_config(temp_dir)

    def test_invalid_source_names_member(self, workspace):
        root = workspace({"bad": "not a source"})
        with pytest.raises(ConfigError, match="Member 'bad'"):
            resolve_sources(root, load_config(root))


class TestFindWorkspaceRoot:
    def test_outermost_megarepo_wins(self, workspace):
        outer = workspace({})
        inner = outer / "repos" / "nested"
        inner.mkdir(parents=True)
        (inner / "megarepo.json").write_text('{"members": {}}')
        deep = inner / "src"
        deep.mkdir()
        assert find_workspace_root(deep) == outer

    def test_no_workspace(self, temp_dir):
        assert find_workspace_root(temp_dir) is None

    def test_environment_override(self, workspace, monkeypatch, temp_dir):
        root = workspace({})
        monkeypatch.setenv("MEGAREPO_ROOT", str(root))
        monkeypatch.chdir(temp_dir)
        assert find_workspace_root() == root
