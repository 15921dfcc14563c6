"""Tests for store addressing"""
import os
import threading

import pytest

from megarepo.constants import STORE_LOCK_NAME
from megarepo.models.source import RefType, RepoKey
from megarepo.services.store import HAS_FCNTL, Store, classify_ref, decode_ref, encode_ref, is_commit_sha

SHA = "a" * 40
KEY = RepoKey("github.com", "owner", "repo")


class TestRefEncoding:
    """Test ref <-> path segment encoding."""

    def test_slash_is_encoded(self):
        assert encode_ref("feature/x") == "feature%2Fx"

    def test_plain_ref_unchanged(self):
        assert encode_ref("main") == "main"

    @pytest.mark.parametrize("ref", ["feature/x", "release/1.2/hotfix", "weird name", "v1.0.0"])
    def test_decode_inverts_encode(self, ref):
        assert decode_ref(encode_ref(ref)) == ref


class TestClassifyRef:
    def test_commit(self):
        assert is_commit_sha(SHA)
        assert classify_ref(SHA) is RefType.COMMITS

    def test_short_sha_is_not_a_commit(self):
        assert not is_commit_sha("abc1234")

    def test_tag_like(self):
        assert classify_ref("v1.0.0") is RefType.TAGS
        assert classify_ref("2.3") is RefType.TAGS

    def test_branch(self):
        assert classify_ref("main") is RefType.HEADS
        assert classify_ref("feature/x") is RefType.HEADS


class TestStorePaths:
    """Test the deterministic store layout."""

    def test_bare_repo_path(self, temp_dir):
        store = Store(temp_dir)
        assert store.bare_repo_path(KEY) == temp_dir / "github.com" / "owner" / "repo" / ".bare"

    def test_worktree_path(self, temp_dir):
        store = Store(temp_dir)
        path = store.worktree_path(KEY, RefType.HEADS, "feature/x")
        assert path == temp_dir / "github.com" / "owner" / "repo" / "refs" / "heads" / "feature%2Fx"

    def test_same_ref_different_type_distinct(self, temp_dir):
        store = Store(temp_dir)
        assert store.worktree_path(KEY, RefType.HEADS, "v1") != store.worktree_path(KEY, RefType.TAGS, "v1")

    def test_decode_path(self, temp_dir):
        store = Store(temp_dir)
        path = store.worktree_path(KEY, RefType.HEADS, "feature/x")
        decoded = store.decode_path(path)
        assert decoded.repo_key == KEY
        assert decoded.ref_type is RefType.HEADS
        assert decoded.ref == "feature/x"
        assert decoded.triple == (KEY, RefType.HEADS, "feature/x")

    def test_decode_nested_owner(self, temp_dir):
        store = Store(temp_dir)
        key = RepoKey("gitlab.com", "group/sub", "project")
        decoded = store.decode_path(store.worktree_path(key, RefType.COMMITS, SHA))
        assert decoded.repo_key == key
        assert decoded.ref == SHA

    def test_decode_outside_store(self, temp_dir):
        store = Store(temp_dir / "store")
        assert store.decode_path(temp_dir / "elsewhere" / "x") is None

    def test_decode_not_a_worktree_path(self, temp_dir):
        store = Store(temp_dir)
        assert store.decode_path(store.bare_repo_path(KEY)) is None


class TestStoreEnumeration:
    """Test listing repositories and worktrees."""

    def test_empty_store(self, temp_dir):
        store = Store(temp_dir / "missing")
        assert store.list_repos() == []
        assert store.list_worktrees() == []

    def test_list_repos_and_worktrees(self, temp_dir):
        store = Store(temp_dir)
        other = RepoKey("gitlab.com", "group/sub", "project")
        for key in (KEY, other):
            store.bare_repo_path(key).mkdir(parents=True)
        store.worktree_path(KEY, RefType.HEADS, "main").mkdir(parents=True)
        store.worktree_path(KEY, RefType.TAGS, "v1.0.0").mkdir(parents=True)

        assert store.list_repos() == sorted([KEY, other], key=str)
        worktrees = store.list_worktrees(KEY)
        assert [(w.ref_type, w.ref) for w in worktrees] == [
            (RefType.HEADS, "main"),
            (RefType.TAGS, "v1.0.0"),
        ]
        assert store.list_worktrees(other) == []


class TestStoreLock:
    def test_lock_is_reentrant(self, temp_dir):
        store = Store(temp_dir / "store")
        with store.lock():
            with store.lock():
                assert store._lock_depth == 2
        assert store._lock_depth == 0
        assert os.path.exists(temp_dir / "store" / ".megarepo-store.lock")


@pytest.mark.skipif(not HAS_FCNTL, reason="fcntl locking not available")
class TestStoreLockContention:
    """Test that the store lock excludes other holders."""

    def test_held_lock_refuses_other_handle(self, temp_dir):
        import fcntl

        store = Store(temp_dir / "store")
        lock_path = temp_dir / "store" / STORE_LOCK_NAME
        with store.lock():
            with open(lock_path, "a+") as other:
                with pytest.raises(BlockingIOError):
                    fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

        with open(lock_path, "a+") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(other.fileno(), fcntl.LOCK_UN)

    def test_second_store_waits_for_release(self, temp_dir):
        first = Store(temp_dir / "store")
        second = Store(temp_dir / "store")
        acquired = threading.Event()

        def _take():
            with second.lock():
                acquired.set()

        thread = threading.Thread(target=_take)
        with first.lock():
            thread.start()
            assert not acquired.wait(0.3)
        thread.join(timeout=10)
        assert acquired.is_set()
