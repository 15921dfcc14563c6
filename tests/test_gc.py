"""Tests for store garbage collection"""
import os

import pytest

from megarepo.core.megarepo import Megarepo
from megarepo.models.results import GcStatus
from megarepo.models.source import RefType, RepoKey
from megarepo.services.gc_service import (
    ALL_WORKTREES_WARNING,
    NO_LOCK_WARNING,
    SINGLE_LOCK_WARNING,
    GcService,
    workspace_lock_files,
)
from megarepo.services.lock_service import LockService
from megarepo.services.store import Store
from megarepo.services.sync_service import SyncOptions, SyncService

LIB_KEY = RepoKey("local", "acme", "lib")


@pytest.fixture
def unused_develop(config, remote_repo, remotes, workspace, write_megarepo):
    """Workspace using main, with a develop worktree left behind in the store."""
    url = remotes.url(remote_repo)
    root = workspace({"lib": url, "dev": url + "#develop"})
    SyncService(config).sync(root, SyncOptions())
    write_megarepo(root, {"lib": url})
    SyncService(config).sync(root, SyncOptions())
    store = Store(config.store_path)
    return root, store.worktree_path(LIB_KEY, RefType.HEADS, "develop")


def _by_ref(result):
    return {r.ref: r for r in result.results}


class TestGcCollect:
    """Test which worktrees gc removes."""

    def test_unreferenced_worktree_removed(self, config, unused_develop):
        root, develop = unused_develop
        lock = LockService(root).read()

        result = GcService(config).collect([lock])
        refs = _by_ref(result)
        assert refs["develop"].status is GcStatus.REMOVED
        assert refs["main"].status is GcStatus.SKIPPED_IN_USE
        assert not develop.exists()
        assert (root / "repos" / "lib" / "README.md").exists()

    def test_single_lock_warning(self, config, unused_develop):
        root, _ = unused_develop
        result = GcService(config).collect([LockService(root).read()], dry_run=True)
        assert result.warnings == [SINGLE_LOCK_WARNING]

    def test_no_lock_warning(self, config, unused_develop):
        result = GcService(config).collect([], dry_run=True)
        assert result.warnings[0] == NO_LOCK_WARNING
        assert {r.status for r in result.results} == {GcStatus.WOULD_REMOVE}

    def test_dry_run_removes_nothing(self, config, unused_develop):
        root, develop = unused_develop
        result = GcService(config).collect([LockService(root).read()], dry_run=True)
        assert _by_ref(result)["develop"].status is GcStatus.WOULD_REMOVE
        assert result.dry_run is True
        assert develop.is_dir()

    def test_dirty_worktree_skipped_then_forced(self, config, unused_develop):
        root, develop = unused_develop
        for name in ("a.txt", "b.txt", "c.txt"):
            (develop / name).write_text("scratch\n")
        lock = LockService(root).read()

        result = GcService(config).collect([lock])
        entry = _by_ref(result)["develop"]
        assert entry.status is GcStatus.SKIPPED_DIRTY
        assert "3 uncommitted changes" in entry.message
        assert develop.is_dir()

        forced = GcService(config).collect([lock], force=True)
        assert _by_ref(forced)["develop"].status is GcStatus.REMOVED
        assert not develop.exists()

    def test_in_use_never_removed_even_with_force(self, config, unused_develop):
        root, _ = unused_develop
        main = os.path.realpath(root / "repos" / "lib")
        (root / "repos" / "lib" / "wip.txt").write_text("wip\n")

        result = GcService(config).collect([LockService(root).read()], force=True)
        entry = _by_ref(result)["main"]
        assert entry.status is GcStatus.SKIPPED_IN_USE
        assert "referenced by a lock file" in entry.message
        assert os.path.isdir(main)

    def test_second_lock_protects_its_worktrees(self, config, remote_repo, remotes, workspace, unused_develop):
        root, develop = unused_develop
        other = workspace({"dev": remotes.url(remote_repo) + "#develop"}, name="other")
        SyncService(config).sync(other, SyncOptions())

        result = GcService(config).collect([LockService(root).read(), LockService(other).read()])
        assert result.warnings == []
        assert _by_ref(result)["develop"].status is GcStatus.SKIPPED_IN_USE
        assert develop.is_dir()

    def test_prune_bare_after_last_worktree(self, config, unused_develop):
        result = GcService(config).collect([], force=True, prune_bare=True)
        assert result.count(GcStatus.REMOVED) == 2
        assert result.removed_bare_repos == [str(LIB_KEY)]
        assert not Store(config.store_path).has_bare_repo(LIB_KEY)

    def test_prune_bare_keeps_referenced_repo(self, config, unused_develop):
        root, _ = unused_develop
        result = GcService(config).collect([LockService(root).read()], prune_bare=True)
        assert result.removed_bare_repos == []
        assert Store(config.store_path).has_bare_repo(LIB_KEY)

    def test_to_dict(self, config, unused_develop):
        root, _ = unused_develop
        data = GcService(config).collect([LockService(root).read()], dry_run=True).to_dict()
        assert data["dryRun"] is True
        assert data["summary"]["would_remove"] == 1
        assert data["summary"]["skipped_in_use"] == 1

    def test_remove_all_ignores_locks(self, config, unused_develop):
        root, develop = unused_develop
        result = GcService(config).collect([LockService(root).read()], dry_run=True, remove_all=True)
        assert result.warnings == [ALL_WORKTREES_WARNING]
        assert {r.status for r in result.results} == {GcStatus.WOULD_REMOVE}
        assert develop.is_dir()

    def test_remove_all_still_skips_dirty(self, config, unused_develop):
        root, _ = unused_develop
        (root / "repos" / "lib" / "wip.txt").write_text("wip\n")

        result = GcService(config).collect([], remove_all=True)
        refs = _by_ref(result)
        assert refs["main"].status is GcStatus.SKIPPED_DIRTY
        assert refs["develop"].status is GcStatus.REMOVED
        assert (root / "repos" / "lib" / "wip.txt").exists()


@pytest.fixture
def deep_workspace(config, remote_repo, remotes, workspace, nested_remote):
    """Workspace whose only member is a megarepo that itself uses lib."""
    inner = nested_remote("inner", {"lib": remotes.url(remote_repo)})
    root = workspace({"inner": remotes.url(inner)})
    SyncService(config).sync(root, SyncOptions(deep=True))
    return root


class TestGcNestedLocks:
    """Test that locks of nested megarepos protect their worktrees."""

    def test_workspace_lock_files_include_nested(self, deep_workspace):
        locks = workspace_lock_files(deep_workspace)
        assert [sorted(lock.members) for lock in locks] == [["inner"], ["lib"]]

    def test_nested_worktree_kept(self, config, deep_workspace):
        result = GcService(config).collect(workspace_lock_files(deep_workspace), workspaces=1)
        assert {r.status for r in result.results} == {GcStatus.SKIPPED_IN_USE}
        assert result.warnings == [SINGLE_LOCK_WARNING]
        assert (deep_workspace / "repos" / "inner" / "repos" / "lib" / "README.md").exists()

    def test_facade_gc_uses_root(self, config, deep_workspace):
        result = Megarepo(config).gc(root=deep_workspace)
        assert result.count(GcStatus.REMOVED) == 0
        assert result.count(GcStatus.SKIPPED_IN_USE) == 2

    def test_lock_path_pulls_in_nested_locks(self, config, deep_workspace):
        locks = Megarepo(config).load_lock_files([deep_workspace])
        assert len(locks) == 2

    def test_shallow_view_would_remove_nested_worktree(self, config, deep_workspace):
        result = GcService(config).collect([LockService(deep_workspace).read()], dry_run=True)
        refs = {(r.repo, r.ref): r.status for r in result.results}
        assert refs[(str(LIB_KEY), "main")] is GcStatus.WOULD_REMOVE
