"""Store addressing and enumeration.

Layout:
    <store>/<host>/<owner>/<repo>/.bare/                      bare repository
    <store>/<host>/<owner>/<repo>/refs/<type>/<encoded ref>/  worktree per ref
"""

import os
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote, unquote

from megarepo.constants import BARE_DIR, REFS_DIR, STORE_LOCK_NAME
from megarepo.exceptions import PermissionDeniedError
from megarepo.models.source import RefType, RepoKey
from megarepo.models.worktree import StoreWorktree
from megarepo.utils.logging import get_logger

# Import fcntl for POSIX file locking (Unix/Linux/macOS)
try:
    import fcntl
    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False

logger = get_logger(__name__)

_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")
_TAG_LIKE_RE = re.compile(r"^v?\d+\.\d+(\.\d+)?")


def is_commit_sha(ref: str) -> bool:
    return bool(_COMMIT_RE.match(ref or ""))


def classify_ref(ref: str) -> RefType:
    """Guess the ref type from its shape alone.

    40-char hex is a commit, semver-like names are tags, anything else is a
    branch. Sync replaces the guess with what the repository reports.
    """
    if is_commit_sha(ref):
        return RefType.COMMITS
    if _TAG_LIKE_RE.match(ref):
        return RefType.TAGS
    return RefType.HEADS


def encode_ref(ref: str) -> str:
    """Percent-encode a ref into a single path segment (feature/x -> feature%2Fx)."""
    return quote(ref, safe="!*'()")


def decode_ref(segment: str) -> str:
    return unquote(segment)


class Store:
    """The shared store of bare repositories and per-ref worktrees."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._lock_guard = threading.RLock()
        self._lock_depth = 0
        self._lock_handle = None

    def repo_dir(self, repo_key: RepoKey) -> Path:
        return self.root / repo_key.host / repo_key.owner / repo_key.repo

    def bare_repo_path(self, repo_key: RepoKey) -> Path:
        return self.repo_dir(repo_key) / BARE_DIR

    def has_bare_repo(self, repo_key: RepoKey) -> bool:
        return self.bare_repo_path(repo_key).is_dir()

    def worktree_path(self, repo_key: RepoKey, ref_type: RefType, ref: str) -> Path:
        """Deterministic worktree location for (repo_key, ref_type, ref)."""
        return self.repo_dir(repo_key) / REFS_DIR / ref_type.value / encode_ref(ref)

    def worktree(self, repo_key: RepoKey, ref_type: RefType, ref: str) -> StoreWorktree:
        return StoreWorktree(
            repo_key=repo_key,
            ref_type=ref_type,
            ref=ref,
            path=str(self.worktree_path(repo_key, ref_type, ref)),
        )

    def decode_path(self, path: Union[str, Path]) -> Optional[StoreWorktree]:
        """Inverse of worktree_path. Returns None for paths outside the store layout."""
        root = os.path.realpath(self.root)
        target = os.path.realpath(path)
        try:
            rel = Path(os.path.relpath(target, root))
        except ValueError:
            return None

        parts = rel.parts
        if not parts or parts[0] == "..":
            return None
        # host, owner (may span segments), repo, "refs", type, ref
        if len(parts) < 6 or parts[-3] != REFS_DIR:
            return None
        try:
            ref_type = RefType(parts[-2])
        except ValueError:
            return None

        repo_key = RepoKey(host=parts[0], owner="/".join(parts[1:-4]), repo=parts[-4])
        return StoreWorktree(
            repo_key=repo_key,
            ref_type=ref_type,
            ref=decode_ref(parts[-1]),
            path=str(self.worktree_path(repo_key, ref_type, decode_ref(parts[-1]))),
        )

    def list_repos(self) -> List[RepoKey]:
        """All repositories in the store that have a bare clone."""
        if not self.root.is_dir():
            return []

        repos = []
        root = str(self.root)
        for dirpath, dirnames, _ in os.walk(root):
            if BARE_DIR in dirnames:
                rel = Path(os.path.relpath(dirpath, root)).parts
                if len(rel) >= 3:
                    repos.append(RepoKey(host=rel[0], owner="/".join(rel[1:-1]), repo=rel[-1]))
                dirnames[:] = []
                continue
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        return sorted(repos, key=str)

    def list_worktrees(self, repo_key: Optional[RepoKey] = None) -> List[StoreWorktree]:
        """Worktree directories for one repository, or for the whole store."""
        keys = [repo_key] if repo_key else self.list_repos()
        worktrees = []
        for key in keys:
            refs_root = self.repo_dir(key) / REFS_DIR
            for ref_type in RefType:
                type_dir = refs_root / ref_type.value
                if not type_dir.is_dir():
                    continue
                for entry in sorted(type_dir.iterdir()):
                    if entry.is_dir() and not entry.is_symlink():
                        worktrees.append(StoreWorktree(
                            repo_key=key,
                            ref_type=ref_type,
                            ref=decode_ref(entry.name),
                            path=str(entry),
                        ))
        return worktrees

    @contextmanager
    def lock(self):
        """Hold the advisory store lock. Re-entrant within one process."""
        with self._lock_guard:
            if self._lock_depth == 0:
                self._acquire_file_lock()
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
                if self._lock_depth == 0:
                    self._release_file_lock()

    def _acquire_file_lock(self):
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            handle = open(self.root / STORE_LOCK_NAME, "a+")
        except PermissionError as e:
            raise PermissionDeniedError(str(self.root), str(e)) from e

        if HAS_FCNTL:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                logger.info(f"Waiting for another megarepo process to release {self.root}")
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            logger.debug(f"Acquired store lock on {self.root}")
        else:
            logger.debug("File locking not available on this platform")
        self._lock_handle = handle

    def _release_file_lock(self):
        handle, self._lock_handle = self._lock_handle, None
        if handle is None:
            return
        try:
            if HAS_FCNTL:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                logger.debug(f"Released store lock on {self.root}")
        finally:
            handle.close()
