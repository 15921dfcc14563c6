"""Tests for workspace status and drift diagnosis"""
import os
import shutil

import git

from megarepo.models.source import RefType, RepoKey
from megarepo.models.status import ProblemKind
from megarepo.services.git import GitOperations
from megarepo.services.status_service import StatusService
from megarepo.services.store import Store
from megarepo.services.sync_service import SyncOptions, SyncService

LIB_KEY = RepoKey("local", "acme", "lib")


def _synced(config, root):
    SyncService(config).sync(root, SyncOptions())
    return StatusService(config).get_status(root)


def _kinds(status):
    return [p.kind for p in status.problems]


class TestFreshWorkspace:
    """Test status before anything was synced."""

    def test_not_synced_and_lock_missing(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        status = StatusService(config).get_status(root)

        assert status.sync_needed is True
        assert status.sync_reasons == ["Member 'lib' symlink missing", "Lock file missing"]
        assert _kinds(status) == [ProblemKind.NOT_SYNCED, ProblemKind.LOCK_MISSING]
        member = status.members[0]
        assert member.exists is False
        assert member.symlink_exists is False
        assert member.lock_info is None
        assert status.last_sync_time is None

    def test_local_only_workspace_needs_no_lock(self, config, workspace, temp_dir):
        (temp_dir / "workspace" / "tool").mkdir(parents=True)
        root = workspace({"tool": "./tool"})
        status = StatusService(config).get_status(root)
        assert ProblemKind.LOCK_MISSING not in _kinds(status)
        assert status.sync_reasons == ["Member 'tool' symlink missing"]


class TestDrift:
    """Test each drift kind against a synced workspace."""

    def test_symlink_drift(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        _synced(config, root)

        store = Store(config.store_path)
        develop = store.worktree_path(LIB_KEY, RefType.HEADS, "develop")
        GitOperations(config).add_worktree(store.bare_repo_path(LIB_KEY), develop, RefType.HEADS, "develop")
        link = root / "repos" / "lib"
        link.unlink()
        os.symlink(develop, link)

        status = StatusService(config).get_status(root)
        drift = status.members[0].symlink_drift
        assert drift.symlink_ref == "develop"
        assert drift.expected_ref == "main"
        assert drift.actual_git_branch == "develop"
        assert status.problems[0].kind is ProblemKind.SYMLINK_DRIFT
        assert status.problems[0].severity == "error"
        assert "Member 'lib' symlink points to 'develop' but lock expects 'main'" in status.sync_reasons
        assert status.members[0].commit_drift is None

    def test_ref_mismatch(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        _synced(config, root)
        git.Git(str(root / "repos" / "lib")).checkout("-b", "experiment")

        status = StatusService(config).get_status(root)
        mismatch = status.members[0].ref_mismatch
        assert mismatch.expected_ref == "main"
        assert mismatch.actual_ref == "experiment"
        assert mismatch.is_detached is False
        assert status.problems[0].kind is ProblemKind.REF_MISMATCH
        assert "megarepo pin lib -c experiment" in status.problems[0].fix_hint()

    def test_detached_head_in_branch_worktree(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        _synced(config, root)
        git.Git(str(root / "repos" / "lib")).checkout("--detach")

        status = StatusService(config).get_status(root)
        mismatch = status.members[0].ref_mismatch
        assert mismatch.is_detached is True
        assert status.problems[0].fix_hint() == "git checkout main"

    def test_commit_drift_and_unpushed(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        _synced(config, root)
        member_dir = root / "repos" / "lib"
        (member_dir / "local.txt").write_text("local\n")
        g = git.Git(str(member_dir))
        g.add("local.txt")
        g.commit("-m", "Local commit")

        status = StatusService(config).get_status(root)
        member = status.members[0]
        assert member.commit_drift is not None
        assert member.commit_drift.local_commit == g.rev_parse("HEAD").strip()
        assert member.git_status.has_unpushed is True
        assert _kinds(status) == [ProblemKind.COMMIT_DRIFT, ProblemKind.UNPUSHED]
        assert status.sync_reasons[-1] == "Member 'lib' has unpushed commits"

    def test_dirty_member(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        _synced(config, root)
        (root / "repos" / "lib" / "wip.txt").write_text("wip\n")

        status = StatusService(config).get_status(root)
        assert _kinds(status) == [ProblemKind.DIRTY]
        assert status.problems[0].severity == "info"
        assert status.sync_needed is True
        assert status.sync_reasons == ["Member 'lib' has 1 uncommitted change"]

    def test_worktree_missing(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        _synced(config, root)
        shutil.rmtree(os.path.realpath(root / "repos" / "lib"))

        status = StatusService(config).get_status(root)
        member = status.members[0]
        assert member.symlink_exists is True
        assert member.exists is False
        assert status.sync_reasons == ["Member 'lib' worktree missing"]


class TestLockStaleness:
    def test_member_not_in_lock(self, config, remote_repo, remotes, workspace, write_megarepo):
        url = remotes.url(remote_repo)
        root = workspace({"lib": url})
        _synced(config, root)
        write_megarepo(root, {"lib": url, "dev": url + "#develop"})

        status = StatusService(config).get_status(root)
        assert status.lock_staleness.missing_from_lock == ["dev"]
        assert "Member 'dev' not in lock file" in status.sync_reasons
        assert _kinds(status) == [ProblemKind.NOT_SYNCED, ProblemKind.LOCK_STALE]

    def test_extra_in_lock(self, config, remote_repo, remotes, workspace, write_megarepo):
        url = remotes.url(remote_repo)
        root = workspace({"lib": url, "dev": url + "#develop"})
        _synced(config, root)
        write_megarepo(root, {"lib": url})

        status = StatusService(config).get_status(root)
        assert status.lock_staleness.extra_in_lock == ["dev"]
        assert status.sync_reasons == ["Lock file has extra member 'dev'"]


class TestStatusJson:
    def test_to_dict_shape(self, config, remote_repo, remotes, workspace):
        root = workspace({"lib": remotes.url(remote_repo)})
        data = _synced(config, root).to_dict()

        assert data["syncNeeded"] is False
        assert data["lockStaleness"] == {"exists": True, "missingFromLock": [], "extraInLock": []}
        member = data["members"][0]
        assert member["name"] == "lib"
        assert member["symlinkExists"] is True
        assert member["lockInfo"]["ref"] == "main"
        assert member["gitStatus"]["isDirty"] is False
        assert member["nestedMembers"] is None
