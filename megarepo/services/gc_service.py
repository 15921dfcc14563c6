"""Garbage collection of store worktrees no lock file references."""

import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Set, Tuple, Union

import git

from megarepo.constants import MEMBERS_DIR
from megarepo.exceptions import (
    ConfigError,
    DirtyWorktreeBlocksRemovalError,
    MegarepoError,
    NoCloneUrlResolvableError,
    WorktreeInUseError,
)
from megarepo.models.lock import LockFile
from megarepo.models.results import GcResult, GcStatus, GcWorktreeResult
from megarepo.models.source import RepoKey
from megarepo.models.worktree import StoreWorktree
from megarepo.services.config_loader import is_megarepo, load_config
from megarepo.services.git.operations import GitOperations, format_git_error
from megarepo.services.lock_service import LockService
from megarepo.services.source_resolver import repo_key_from_url
from megarepo.services.store import Store
from megarepo.utils.logging import get_logger

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)

SINGLE_LOCK_WARNING = (
    "Only one workspace lock file was considered; worktrees used by other workspaces "
    "sharing this store may be reported as unused. Pass their lock files to keep them."
)
NO_LOCK_WARNING = (
    "No lock file was supplied; every worktree in the store is treated as unused."
)
ALL_WORKTREES_WARNING = (
    "--all given: lock files are ignored and every worktree in the store is treated as unused."
)


def nested_lock_files(root: Union[str, Path], visited: Optional[Set[str]] = None) -> List[LockFile]:
    """Lock files of the megarepos linked as members below root, recursively.

    Nested megarepos keep their own lock inside their worktree; their members
    are in use as long as the enclosing workspace is.
    """
    root = os.path.realpath(root)
    visited = visited if visited is not None else set()
    visited.add(root)
    try:
        members = load_config(root).members
    except ConfigError as e:
        logger.warning(f"Cannot read members of {root}: {e}")
        return []

    locks: List[LockFile] = []
    for name in sorted(members):
        target = os.path.realpath(os.path.join(root, MEMBERS_DIR, name))
        if target in visited or not is_megarepo(target):
            continue
        visited.add(target)
        lock = LockService(target).read()
        if lock is not None:
            logger.debug(f"Keeping worktrees referenced by nested megarepo {name}")
            locks.append(lock)
        locks.extend(nested_lock_files(target, visited))
    return locks


def workspace_lock_files(root: Union[str, Path]) -> List[LockFile]:
    """The lock of the workspace at root plus those of its nested megarepos."""
    lock = LockService(root).read()
    return ([lock] if lock is not None else []) + nested_lock_files(root)


def in_use_pairs(lock_files: List[LockFile]) -> Tuple[Set[Tuple[RepoKey, str]], List[str]]:
    """(repo_key, ref) pairs referenced by the lock files, plus warnings.

    Every entry protects both its ref worktree and the commits/<sha>
    worktree that pinned and frozen syncs materialise.
    """
    pairs: Set[Tuple[RepoKey, str]] = set()
    warnings: List[str] = []
    for lock in lock_files:
        for name, entry in lock.members.items():
            try:
                key = repo_key_from_url(entry.url)
            except NoCloneUrlResolvableError:
                warnings.append(f"Lock entry '{name}' has an unrecognised URL: {entry.url}")
                continue
            pairs.add((key, entry.ref))
            pairs.add((key, entry.commit))
    return pairs, warnings


class GcService:
    """Removes unreferenced worktrees from the shared store."""

    def __init__(self, config: "Config", store: Optional[Store] = None,
                 git_ops: Optional[GitOperations] = None):
        self.config = config
        self.store = store or Store(config.store_path)
        self.git_ops = git_ops or GitOperations(config)

    def collect(self, lock_files: List[LockFile], force: bool = False, dry_run: bool = False,
                prune_bare: bool = False, remove_all: bool = False,
                workspaces: Optional[int] = None) -> GcResult:
        """Remove worktrees not referenced by any of lock_files.

        Dirty or unpushed worktrees are kept unless force. Referenced
        worktrees are never removed, force or not. With remove_all the lock
        files are ignored and every worktree counts as unused.

        workspaces is the number of top-level workspaces the lock files came
        from, so nested megarepo locks do not count as extra workspaces. It
        defaults to len(lock_files).
        """
        if remove_all:
            in_use, warnings = set(), [ALL_WORKTREES_WARNING]
        else:
            in_use, warnings = in_use_pairs(lock_files)
            workspaces = len(lock_files) if workspaces is None else workspaces
            if not lock_files:
                warnings.insert(0, NO_LOCK_WARNING)
            elif workspaces == 1:
                warnings.insert(0, SINGLE_LOCK_WARNING)
        for warning in warnings:
            logger.warning(warning)

        result = GcResult(warnings=warnings, dry_run=dry_run)
        if dry_run:
            self._collect(result, in_use, force, dry_run, prune_bare)
        else:
            with self.store.lock():
                self._collect(result, in_use, force, dry_run, prune_bare)

        logger.info(
            f"GC: {result.count(GcStatus.REMOVED)} removed, "
            f"{result.count(GcStatus.SKIPPED_DIRTY)} dirty, "
            f"{result.count(GcStatus.SKIPPED_IN_USE)} in use, "
            f"{result.count(GcStatus.ERROR)} errors"
        )
        return result

    def _collect(self, result: GcResult, in_use: Set[Tuple[RepoKey, str]], force: bool,
                 dry_run: bool, prune_bare: bool) -> None:
        touched: Set[RepoKey] = set()
        for worktree in self.store.list_worktrees():
            entry = self._process(worktree, in_use, force, dry_run)
            result.results.append(entry)
            if entry.status in (GcStatus.REMOVED, GcStatus.WOULD_REMOVE):
                touched.add(worktree.repo_key)

        if prune_bare:
            for key in sorted(touched, key=str):
                self._maybe_remove_bare(key, in_use, result, dry_run)

    def _process(self, worktree: StoreWorktree, in_use: Set[Tuple[RepoKey, str]], force: bool,
                 dry_run: bool) -> GcWorktreeResult:
        entry = GcWorktreeResult(
            repo=str(worktree.repo_key),
            ref_type=worktree.ref_type.value,
            ref=worktree.ref,
            path=worktree.path,
            status=GcStatus.ERROR,
        )

        if (worktree.repo_key, worktree.ref) in in_use:
            entry.status = GcStatus.SKIPPED_IN_USE
            entry.message = str(WorktreeInUseError(worktree.path))
            return entry

        try:
            if self.git_ops.is_worktree(worktree.path):
                changes = self.git_ops.changes_count(worktree.path)
                unpushed = self.git_ops.has_unpushed(worktree.path)
                if (changes or unpushed) and not force:
                    entry.status = GcStatus.SKIPPED_DIRTY
                    entry.message = str(DirtyWorktreeBlocksRemovalError(worktree.path, changes, unpushed))
                    return entry
            else:
                entry.message = "broken worktree (no .git)"

            if dry_run:
                entry.status = GcStatus.WOULD_REMOVE
                return entry

            ok, error = self.git_ops.remove_worktree(
                self.store.bare_repo_path(worktree.repo_key), worktree.path, force=force)
            if ok:
                entry.status = GcStatus.REMOVED
            else:
                entry.message = error
        except git.exc.GitCommandError as e:
            entry.message = format_git_error("status", e)
        except (MegarepoError, OSError) as e:
            entry.message = str(e)

        if entry.status is GcStatus.ERROR:
            logger.error(f"Could not collect {worktree}: {entry.message}")
        return entry

    def _maybe_remove_bare(self, key: RepoKey, in_use: Set[Tuple[RepoKey, str]], result: GcResult,
                           dry_run: bool) -> None:
        if any(pair_key == key for pair_key, _ in in_use):
            return
        remaining = [
            r for r in result.results
            if r.repo == str(key) and r.status not in (GcStatus.REMOVED, GcStatus.WOULD_REMOVE)
        ]
        if remaining:
            return
        if not dry_run:
            try:
                shutil.rmtree(self.store.repo_dir(key))
            except OSError as e:
                result.warnings.append(f"Could not remove bare repository {key}: {e}")
                return
            logger.info(f"Removed bare repository {key}")
        result.removed_bare_repos.append(str(key))
