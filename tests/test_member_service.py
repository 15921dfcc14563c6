"""Tests for adding members to a workspace"""
import json

import pytest

from megarepo.exceptions import ConfigError, InvalidSourceError
from megarepo.models.results import SyncStatus
from megarepo.services.lock_service import LockService
from megarepo.services.member_service import MemberService, suggest_member_name


def _members(root):
    return json.loads((root / "megarepo.json").read_text())["members"]


class TestSuggestMemberName:
    def test_shorthand(self):
        assert suggest_member_name("acme/widgets#v2") == "widgets"

    def test_url_strips_dot_git(self):
        assert suggest_member_name("git@github.com:acme/widgets.git") == "widgets"

    def test_local_path(self, temp_dir):
        assert suggest_member_name("../tools/linter", temp_dir / "ws") == "linter"

    def test_invalid_source(self):
        with pytest.raises(InvalidSourceError):
            suggest_member_name("not a source")


class TestAddMember:
    """Test declaring and syncing new members."""

    def test_add_and_sync(self, config, remote_repo, remotes, workspace):
        root = workspace({})
        result = MemberService(config).add(root, remotes.url(remote_repo))

        assert result.name == "lib"
        assert result.member_result.status is SyncStatus.CLONED
        assert result.has_errors is False
        assert _members(root) == {"lib": remotes.url(remote_repo)}
        assert (root / "repos" / "lib" / "README.md").exists()
        assert LockService(root).read().get("lib").ref == "main"

    def test_add_without_sync(self, config, remote_repo, remotes, workspace):
        root = workspace({})
        source = remotes.url(remote_repo) + "#develop"
        result = MemberService(config).add(root, source, name="dev", sync=False)

        assert result.sync_result is None
        assert result.to_dict() == {"member": "dev", "source": source, "synced": False}
        assert _members(root) == {"dev": source}
        assert not (root / "repos").exists()

    def test_other_keys_kept(self, config, workspace):
        root = workspace({})
        (root / "megarepo.json").write_text(
            json.dumps({"$schema": "x.json", "members": {}, "generators": {"vscode": True}}))

        MemberService(config).add(root, "acme/widgets", sync=False)
        data = json.loads((root / "megarepo.json").read_text())
        assert data["$schema"] == "x.json"
        assert data["generators"] == {"vscode": True}
        assert data["members"] == {"widgets": "acme/widgets"}
        assert (root / "megarepo.json").read_text().endswith("}\n")

    def test_existing_member_rejected(self, config, workspace):
        root = workspace({"widgets": "acme/widgets"})
        with pytest.raises(ConfigError, match="already exists"):
            MemberService(config).add(root, "acme/other", name="widgets", sync=False)
        assert _members(root) == {"widgets": "acme/widgets"}

    def test_invalid_name_rejected(self, config, workspace):
        root = workspace({})
        with pytest.raises(ConfigError):
            MemberService(config).add(root, "acme/widgets", name="a/b", sync=False)

    def test_invalid_source_not_written(self, config, workspace):
        root = workspace({})
        with pytest.raises(InvalidSourceError):
            MemberService(config).add(root, "ftp://host/a/b", name="x", sync=False)
        assert _members(root) == {}

    def test_sync_only_touches_new_member(self, config, remote_repo, remotes, workspace):
        root = workspace({"missing": "./missing"})
        result = MemberService(config).add(root, remotes.url(remote_repo))

        assert [r.name for r in result.sync_result.results] == ["lib"]
        assert result.has_errors is False
