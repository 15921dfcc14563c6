"""Tests for store-level add, fetch, status and ls"""
import pytest

from megarepo.exceptions import InvalidSourceError, LocalPathNotAddableError
from megarepo.services.store_maintenance import StoreMaintenance
from megarepo.services.sync_service import SyncOptions, SyncService


class TestStoreAdd:
    def test_add_clones_once(self, config, remote_repo, remotes):
        maintenance = StoreMaintenance(config)
        first = maintenance.add(remotes.url(remote_repo))
        assert first.status == "cloned"
        assert first.repo == "local/acme/lib"

        second = maintenance.add(remotes.url(remote_repo))
        assert second.status == "already_present"
        assert maintenance.list_repos() == ["local/acme/lib"]

    def test_add_dry_run(self, config, remote_repo, remotes):
        maintenance = StoreMaintenance(config)
        result = maintenance.add(remotes.url(remote_repo), dry_run=True)
        assert result.status == "would clone"
        assert maintenance.list_repos() == []

    def test_add_local_path_rejected(self, config):
        with pytest.raises(LocalPathNotAddableError):
            StoreMaintenance(config).add("./some/dir")

    def test_add_invalid_source(self, config):
        with pytest.raises(InvalidSourceError):
            StoreMaintenance(config).add("not a source")


class TestStoreFetchAndStatus:
    def test_fetch_all(self, config, remote_repo, remotes, commit_file):
        maintenance = StoreMaintenance(config)
        maintenance.add(remotes.url(remote_repo))
        new = commit_file(remote_repo, "new.txt", "new\n")

        results = maintenance.fetch()
        assert [(r.repo, r.status) for r in results] == [("local/acme/lib", "fetched")]
        bare = maintenance.store.bare_repo_path(maintenance.store.list_repos()[0])
        assert maintenance.git_ops.resolve_commit(bare, "refs/remotes/origin/main") == new

    def test_fetch_dry_run(self, config, remote_repo, remotes):
        maintenance = StoreMaintenance(config)
        maintenance.add(remotes.url(remote_repo))
        assert [r.status for r in maintenance.fetch(dry_run=True)] == ["would fetch"]

    def test_status_reports_dirty_worktrees(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        SyncService(config).sync(root, SyncOptions())
        (root / "repos" / "lib" / "wip.txt").write_text("wip\n")

        statuses = StoreMaintenance(config).status()
        assert len(statuses) == 1
        entry = statuses[0]
        assert (entry.ref_type, entry.ref) == ("heads", "main")
        assert entry.is_dirty is True
        assert entry.changes_count == 1
        assert entry.broken is False
