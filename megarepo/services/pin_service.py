"""Pinning members to a fixed commit."""

import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from megarepo.constants import MEMBERS_DIR, SHORT_SHA_LENGTH
from megarepo.exceptions import (
    ConfigError,
    GitOperationError,
    LocalPathNotAddableError,
    LockFileMissingError,
)
from megarepo.models.lock import LockFile
from megarepo.models.results import MemberSyncResult, SyncStatus
from megarepo.models.source import LocalSource, RefType, RemoteSource
from megarepo.services.config_loader import load_config, resolve_sources
from megarepo.services.git.operations import GitOperations
from megarepo.services.lock_service import LockService, upsert_entry
from megarepo.services.status_service import read_link_target
from megarepo.services.store import Store
from megarepo.services.sync_service import replace_symlink
from megarepo.utils.logging import get_logger

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)


class PinService:
    """Pins and unpins lock entries. The only writer allowed to move a pinned commit."""

    def __init__(self, config: "Config", store: Optional[Store] = None,
                 git_ops: Optional[GitOperations] = None):
        self.config = config
        self.store = store or Store(config.store_path)
        self.git_ops = git_ops or GitOperations(config)

    def _remote_member(self, root: Path, name: str) -> RemoteSource:
        config = load_config(root)
        sources = resolve_sources(root, config)
        if name not in sources:
            raise ConfigError(f"Member '{name}' not found in megarepo.json")
        source = sources[name]
        if isinstance(source, LocalSource):
            raise LocalPathNotAddableError(config.members[name])
        return source

    def pin(self, root: Union[str, Path], name: str, commit: Optional[str] = None) -> MemberSyncResult:
        """Pin a member to commit (default: the commit its worktree is at).

        The member is relinked to a detached commits/<sha> worktree unless its
        current worktree already sits at that commit.
        """
        root = Path(root).resolve()
        source = self._remote_member(root, name)
        lock_service = LockService(root)
        lock = lock_service.read() or LockFile()
        entry = lock.get(name)

        link = root / MEMBERS_DIR / name
        current = read_link_target(link)
        worktree_ok = current is not None and self.git_ops.is_worktree(current)
        if entry is None and not worktree_ok:
            raise LockFileMissingError(str(lock_service.path), f"Member '{name}' not synced yet (run sync first)")

        bare = self.store.bare_repo_path(source.repo_key)
        if commit:
            sha = self.git_ops.resolve_commit(bare, commit)
            if not sha:
                raise GitOperationError("pin", name, f"Commit '{commit}' not found in {source.repo_key}")
        else:
            sha = self.git_ops.head_commit(current) if worktree_ok else entry.commit

        if entry is not None and entry.pinned and entry.commit == sha:
            return MemberSyncResult(name=name, status=SyncStatus.ALREADY_SYNCED, commit=sha,
                                    ref=entry.ref, message="already pinned")

        ref = entry.ref if entry else None
        if ref is None:
            decoded = self.store.decode_path(current)
            ref = self.git_ops.current_branch(current) or (decoded.ref if decoded else sha)

        with self.store.lock():
            if not (worktree_ok and self.git_ops.head_commit(current) == sha):
                wt_path = self.store.worktree_path(source.repo_key, RefType.COMMITS, sha)
                self.git_ops.require_worktree(wt_path)
                if not self.git_ops.is_worktree(wt_path):
                    self.git_ops.add_worktree(bare, wt_path, RefType.COMMITS, sha)
                if current is None or os.path.realpath(current) != os.path.realpath(wt_path):
                    replace_symlink(link, wt_path)

            previous = entry.commit if entry else None
            upsert_entry(lock, name, source.url, ref, sha, pinned=True)
            lock_service.write(lock)

        logger.info(f"Pinned {name} at {sha[:SHORT_SHA_LENGTH]}")
        return MemberSyncResult(
            name=name,
            status=SyncStatus.LOCKED,
            commit=sha,
            previous_commit=previous if previous != sha else None,
            ref=ref,
            message=f"pinned at {sha[:SHORT_SHA_LENGTH]}",
            lock_updated=True,
        )

    def unpin(self, root: Union[str, Path], name: str) -> MemberSyncResult:
        """Clear the pin; the next sync relinks the member to its ref worktree."""
        root = Path(root).resolve()
        source = self._remote_member(root, name)
        lock_service = LockService(root)
        lock = lock_service.read()
        entry = lock.get(name) if lock else None
        if entry is None:
            raise LockFileMissingError(str(lock_service.path), f"Member '{name}' is not in the lock file")

        if not entry.pinned:
            return MemberSyncResult(name=name, status=SyncStatus.ALREADY_SYNCED, commit=entry.commit,
                                    ref=entry.ref, message="not pinned")

        with self.store.lock():
            upsert_entry(lock, name, source.url, entry.ref, entry.commit, pinned=False)
            lock_service.write(lock)

        logger.info(f"Unpinned {name}")
        return MemberSyncResult(name=name, status=SyncStatus.LOCKED, commit=entry.commit, ref=entry.ref,
                                message="unpinned; run sync to follow the ref again", lock_updated=True)
