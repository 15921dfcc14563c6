"""Sync reconciliation: bring a workspace to the state its config and lock declare."""

import copy
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple, Union

import git

from megarepo.constants import MEMBERS_DIR
from megarepo.exceptions import (
    ConfigError,
    CyclicMegarepoNestingError,
    GitOperationError,
    LockFileMissingError,
    LockFileStaleError,
    MegarepoError,
    MissingBareRepoError,
    NoCloneUrlResolvableError,
    PermissionDeniedError,
)
from megarepo.models.lock import LockEntry, LockFile
from megarepo.models.results import MegarepoSyncResult, MemberSyncResult, SyncStatus
from megarepo.models.source import LocalSource, RefType, RemoteSource, RepoKey
from megarepo.services.config_loader import is_megarepo, load_config, resolve_sources
from megarepo.services.git.operations import GitOperations, format_git_error
from megarepo.services.lock_service import (
    LockService,
    check_staleness,
    sync_with_config,
    upsert_entry,
)
from megarepo.services.source_resolver import repo_key_from_url, resolve_clone_url, same_repository
from megarepo.services.status_service import read_link_target
from megarepo.services.store import Store
from megarepo.utils.logging import get_logger
from megarepo.utils.threading import run_parallel

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)


@dataclass
class SyncOptions:
    """Per-run switches for sync."""
    dry_run: bool = False
    frozen: bool = False
    pull: bool = False
    force: bool = False
    deep: bool = False
    only: List[str] = field(default_factory=list)
    skip: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: "Config", only: Optional[List[str]] = None,
                    skip: Optional[List[str]] = None) -> "SyncOptions":
        return cls(
            dry_run=config.dry_run,
            frozen=config.frozen,
            pull=config.pull,
            force=config.force,
            deep=config.deep,
            only=list(only or []),
            skip=list(skip or []),
        )

    def selects(self, name: str) -> bool:
        if self.only and name not in self.only:
            return False
        return name not in self.skip


@dataclass
class _LockUpdate:
    url: str
    ref: str
    commit: str
    pinned: Optional[bool] = None


def replace_symlink(link: Path, target: Union[str, Path]) -> None:
    """Point link at target without a window where link is missing.

    The new link is created under a temporary name and renamed over the old one.
    """
    link.parent.mkdir(parents=True, exist_ok=True)
    target = str(target).rstrip(os.sep) or os.sep
    temp = link.parent / f".{link.name}.tmp-{os.getpid()}-{threading.get_ident()}"
    try:
        if os.path.lexists(temp):
            os.unlink(temp)
        os.symlink(target, temp)
        os.replace(temp, link)
    except PermissionError as e:
        raise PermissionDeniedError(str(link), str(e)) from e
    finally:
        if os.path.lexists(temp):
            os.unlink(temp)


class SyncService:
    """Reconciles workspaces against their declared members and lock file."""

    def __init__(self, config: "Config", store: Optional[Store] = None,
                 git_ops: Optional[GitOperations] = None):
        self.config = config
        self.store = store or Store(config.store_path)
        self.git_ops = git_ops or GitOperations(config)
        self._repo_locks: Dict[RepoKey, threading.Lock] = {}
        self._repo_locks_guard = threading.Lock()

    def _repo_lock(self, key: RepoKey) -> threading.Lock:
        """Lock serialising clone/fetch/worktree-add on one bare repository."""
        with self._repo_locks_guard:
            if key not in self._repo_locks:
                self._repo_locks[key] = threading.Lock()
            return self._repo_locks[key]

    def sync(self, root: Union[str, Path], options: Optional[SyncOptions] = None) -> MegarepoSyncResult:
        """Sync the workspace at root (and nested megarepos with options.deep).

        Raises:
            ConfigError: malformed config or lock
            LockFileMissingError / LockFileStaleError: --frozen pre-flight failures
            CyclicMegarepoNestingError: a megarepo transitively contains itself
        """
        options = options or SyncOptions.from_config(self.config)
        root = Path(root).resolve()
        if options.dry_run:
            return self._sync_workspace(root, options, ancestry=[], visited={str(root)})
        with self.store.lock():
            return self._sync_workspace(root, options, ancestry=[], visited={str(root)})

    def identity(self, path: Union[str, Path]) -> str:
        """Identity of a megarepo for cycle detection: its origin's store key, else its real path."""
        real = os.path.realpath(path)
        url = self.git_ops.remote_url(real) if os.path.exists(os.path.join(real, ".git")) else None
        if url:
            try:
                return str(repo_key_from_url(url))
            except NoCloneUrlResolvableError:
                pass
        return real

    def _sync_workspace(self, root: Path, options: SyncOptions, ancestry: List[str],
                        visited: Set[str]) -> MegarepoSyncResult:
        identity = self.identity(root)
        if identity in ancestry:
            raise CyclicMegarepoNestingError(ancestry + [identity])
        chain = ancestry + [identity]

        # Pre-flight: everything structural fails before any mutation
        config = load_config(root)
        sources = resolve_sources(root, config)
        lock_service = LockService(root)
        lock = lock_service.read()
        remote_names = [name for name, src in sources.items() if not isinstance(src, LocalSource)]

        if options.frozen:
            if lock is None:
                raise LockFileMissingError(str(lock_service.path),
                                           f"--frozen requires {lock_service.path}, which does not exist")
            staleness = check_staleness(lock, remote_names)
            if staleness.is_stale:
                raise LockFileStaleError(staleness.missing_from_lock, staleness.extra_in_lock)

        selected = [name for name in sources if options.selects(name)]
        logger.info(f"Syncing {len(selected)} member(s) in {root}")

        def _one(name):
            return self._sync_member_safe(root, name, sources[name], lock.get(name) if lock else None, options)

        outcomes = run_parallel(
            _one,
            [(name, name) for name in selected],
            workers=self.config.workers,
            sequential=self.config.sequential,
        )
        results = [outcomes[name][0] for name in selected]
        results.extend(self._remove_orphans(root, set(config.members), options))

        result = MegarepoSyncResult(root=str(root), results=results, dry_run=options.dry_run)

        if not options.frozen:
            working = copy.deepcopy(lock) if lock else LockFile()
            sync_with_config(working, remote_names)
            for member_result in results:
                update = outcomes.get(member_result.name, (None, None))[1]
                if update is None:
                    continue
                changed = upsert_entry(working, member_result.name, update.url, update.ref, update.commit,
                                       pinned=update.pinned)
                if changed:
                    member_result.lock_updated = True
                    if member_result.status is SyncStatus.ALREADY_SYNCED:
                        member_result.status = SyncStatus.LOCKED
            if not options.dry_run:
                result.lock_written = lock_service.write(working)

        if options.deep:
            self._sync_nested(root, options, results, result, chain, visited)

        return result

    def _sync_nested(self, root: Path, options: SyncOptions, results: List[MemberSyncResult],
                     result: MegarepoSyncResult, chain: List[str], visited: Set[str]) -> None:
        for member_result in results:
            if member_result.status in (SyncStatus.ERROR, SyncStatus.SKIPPED, SyncStatus.REMOVED):
                continue
            link = root / MEMBERS_DIR / member_result.name
            if not os.path.isdir(link):
                continue
            real = os.path.realpath(link)
            if not is_megarepo(real):
                continue

            nested_identity = self.identity(real)
            if nested_identity in chain:
                raise CyclicMegarepoNestingError(chain + [nested_identity])
            if real in visited:
                logger.debug(f"{member_result.name}: nested megarepo already synced in this run")
                continue
            visited.add(real)
            result.nested_megarepos.append(member_result.name)

            logger.info(f"Descending into nested megarepo {member_result.name}")
            result.nested_results.append(self._sync_workspace(Path(real), options, chain, visited))

    def _remove_orphans(self, root: Path, configured: Set[str], options: SyncOptions) -> List[MemberSyncResult]:
        """Remove symlinks under repos/ for members no longer configured."""
        members_dir = root / MEMBERS_DIR
        if not members_dir.is_dir():
            return []

        removed = []
        for entry in sorted(members_dir.iterdir()):
            if entry.name in configured or entry.name.startswith("."):
                continue
            if not entry.is_symlink():
                logger.warning(f"{entry} is not a symlink and not a configured member; leaving it")
                continue
            if not options.dry_run:
                try:
                    entry.unlink()
                except PermissionError as e:
                    removed.append(MemberSyncResult(
                        name=entry.name, status=SyncStatus.ERROR,
                        message=str(PermissionDeniedError(str(entry), str(e)))))
                    continue
            removed.append(MemberSyncResult(
                name=entry.name,
                status=SyncStatus.REMOVED,
                message="not in config",
                dry_run=options.dry_run,
            ))
        return removed

    def _sync_member_safe(self, root: Path, name: str, source, entry: Optional[LockEntry],
                          options: SyncOptions) -> Tuple[MemberSyncResult, Optional[_LockUpdate]]:
        """Sync one member, turning failures into an error result."""
        try:
            if isinstance(source, LocalSource):
                return self._sync_local(root, name, source, options), None
            return self._sync_remote(root, name, source, entry, options)
        except MegarepoError as e:
            message = str(e)
            hint = getattr(e, "hint", None)
            if hint:
                message += f" ({hint})"
            logger.error(f"{name}: {message}")
            return MemberSyncResult(name=name, status=SyncStatus.ERROR, message=message), None
        except git.exc.GitCommandError as e:
            command = e.command[1] if isinstance(e.command, (list, tuple)) and len(e.command) > 1 else "command"
            message = format_git_error(str(command), e)
            logger.error(f"{name}: {message}")
            return MemberSyncResult(name=name, status=SyncStatus.ERROR, message=message), None
        except OSError as e:
            logger.error(f"{name}: {e}")
            return MemberSyncResult(name=name, status=SyncStatus.ERROR, message=str(e)), None

    def _sync_local(self, root: Path, name: str, source: LocalSource, options: SyncOptions) -> MemberSyncResult:
        link = root / MEMBERS_DIR / name
        if not os.path.isdir(source.path):
            return MemberSyncResult(name=name, status=SyncStatus.ERROR,
                                    message=f"Local path does not exist: {source.path}")

        current = read_link_target(link)
        if current is None and os.path.lexists(link):
            return MemberSyncResult(name=name, status=SyncStatus.SKIPPED,
                                    message=f"{link} exists and is not a symlink")
        if current and os.path.realpath(current) == os.path.realpath(source.path):
            return MemberSyncResult(name=name, status=SyncStatus.ALREADY_SYNCED)

        if not options.dry_run:
            replace_symlink(link, source.path)
        return MemberSyncResult(name=name, status=SyncStatus.SYNCED, message=f"linked {source.path}",
                                dry_run=options.dry_run)

    def _sync_remote(self, root: Path, name: str, source: RemoteSource, entry: Optional[LockEntry],
                     options: SyncOptions) -> Tuple[MemberSyncResult, Optional[_LockUpdate]]:
        key = source.repo_key
        replaced = entry is not None and not same_repository(entry.url, key)
        if replaced:
            if options.frozen:
                raise ConfigError(
                    f"Lock entry for '{name}' points at {entry.url} but megarepo.json names {source.url}; "
                    "run sync without --frozen to update the lock"
                )
            logger.info(f"{name}: source changed from {entry.url} to {source.url}; ignoring old lock entry")
            entry = None
        bare = self.store.bare_repo_path(key)
        url = resolve_clone_url(source, self.config.git_protocol, entry.url if entry else None)
        fixed = entry is not None and (options.frozen or entry.pinned)
        cloned = False

        with self._repo_lock(key):
            # Absent -> Cloning
            if not self.store.has_bare_repo(key):
                if options.frozen:
                    raise MissingBareRepoError(str(key), "Bare repository not in store and --frozen forbids cloning")
                if options.dry_run:
                    return MemberSyncResult(
                        name=name, status=SyncStatus.CLONED, ref=source.ref or (entry.ref if entry else None),
                        message=f"{url} -> {bare}", dry_run=True,
                    ), None
                logger.info(f"{name}: cloning {url}")
                self.git_ops.clone_bare(url, bare)
                cloned = True
            elif options.pull and not options.frozen and not options.dry_run:
                self.git_ops.fetch(bare)

            # Resolve ref and target commit
            if fixed:
                ref, target_commit = entry.ref, entry.commit
                if not self.git_ops.has_commit(bare, target_commit):
                    if options.frozen or options.dry_run:
                        raise MissingBareRepoError(str(key), f"Locked commit {target_commit} not in store")
                    self.git_ops.fetch(bare)
                    if not self.git_ops.has_commit(bare, target_commit):
                        raise GitOperationError("resolve commit", target_commit, f"Commit not found in {url}")
            else:
                ref = source.ref or self.git_ops.default_branch(bare)
                if not ref and not options.dry_run:
                    ref = self.git_ops.ls_remote_default_branch(url)
                if not ref:
                    raise GitOperationError("resolve default branch", url, "Remote has no default branch")
                target_commit = None

            resolved = self.git_ops.resolve_ref(bare, ref)
            if resolved is None and not fixed and not cloned and not options.dry_run:
                # New upstream ref since the last fetch
                self.git_ops.fetch(bare)
                resolved = self.git_ops.resolve_ref(bare, ref)
            if resolved is None and not fixed:
                raise GitOperationError("resolve ref", ref, f"Ref '{ref}' not found in {url}",
                                        "Check available refs with: git ls-remote --refs <url>")
            ref_type, ref_commit = resolved if resolved else (RefType.COMMITS, target_commit)

            # Choose the worktree to link
            wt_type, wt_ref = ref_type, ref
            if fixed:
                ref_path = self.store.worktree_path(key, ref_type, ref)
                at_commit = (resolved is not None and ref_type is not RefType.COMMITS
                             and self.git_ops.is_worktree(ref_path)
                             and self.git_ops.head_commit(ref_path) == target_commit)
                if not at_commit:
                    wt_type, wt_ref = RefType.COMMITS, target_commit
            wt_path = self.store.worktree_path(key, wt_type, wt_ref)

            # WorktreeMissing -> Linked
            self.git_ops.require_worktree(wt_path)
            created = False
            if not self.git_ops.is_worktree(wt_path):
                if not options.dry_run:
                    self.git_ops.add_worktree(bare, wt_path, wt_type, wt_ref)
                created = True

            # Linked -> Updated
            previous_commit = None
            if (options.pull and not fixed and wt_type is RefType.HEADS
                    and not created and not options.dry_run):
                skipped, previous_commit = self._pull_worktree(name, bare, wt_path, ref, options)
                if skipped:
                    return skipped, None

        if created and options.dry_run:
            commit = target_commit or ref_commit
        else:
            commit = self.git_ops.head_commit(wt_path)
            if not commit:
                raise GitOperationError("rev-parse HEAD", str(wt_path), "Worktree has no HEAD")

        link = root / MEMBERS_DIR / name
        current = read_link_target(link)
        if current is None and os.path.lexists(link):
            return MemberSyncResult(name=name, status=SyncStatus.SKIPPED,
                                    message=f"{link} exists and is not a symlink"), None

        relinked = False
        if current is None or os.path.realpath(current) != os.path.realpath(wt_path):
            if current is not None and not options.force:
                blocked = self._describe_local_work(current)
                if blocked:
                    return MemberSyncResult(
                        name=name, status=SyncStatus.SKIPPED, ref=ref,
                        message=f"ref changed but old worktree has {blocked} (use --force to override)",
                    ), None
            if not options.dry_run:
                replace_symlink(link, wt_path)
            relinked = True

        if cloned:
            status = SyncStatus.CLONED
        elif previous_commit:
            status = SyncStatus.UPDATED
        elif created or relinked:
            status = SyncStatus.SYNCED
        else:
            status = SyncStatus.ALREADY_SYNCED

        result = MemberSyncResult(
            name=name,
            status=status,
            commit=commit,
            previous_commit=previous_commit,
            ref=ref,
            message=f"{wt_type.value}/{wt_ref}" if (created or relinked) else None,
            dry_run=options.dry_run,
        )
        update = _LockUpdate(url=source.url, ref=ref, commit=commit, pinned=False if replaced else None)
        return result, update

    def _pull_worktree(self, name: str, bare: Path, wt_path: Path, ref: str,
                       options: SyncOptions) -> Tuple[Optional[MemberSyncResult], Optional[str]]:
        """Fast-forward a branch worktree to its fetched tip.

        Returns (skip_result, previous_commit); previous_commit is set only when HEAD moved.
        """
        before = self.git_ops.head_commit(wt_path)
        tip = self.git_ops.resolve_commit(bare, f"refs/remotes/origin/{ref}")
        if not tip or tip == before:
            return None, None

        if not options.force:
            blocked = self._describe_local_work(str(wt_path))
            if blocked:
                return MemberSyncResult(
                    name=name, status=SyncStatus.SKIPPED, ref=ref,
                    message=f"worktree has {blocked}; not pulling (use --force to override)",
                ), None

        if before and not self.git_ops.is_ancestor(wt_path, before, tip):
            return MemberSyncResult(
                name=name, status=SyncStatus.SKIPPED, ref=ref,
                message=f"local branch has diverged from origin/{ref}; cannot fast-forward",
            ), None

        self.git_ops.fast_forward(wt_path, ref)
        logger.info(f"{name}: {before[:7] if before else '?'} -> {tip[:7]}")
        return None, before

    def _describe_local_work(self, path: str) -> Optional[str]:
        """Human description of uncommitted/unpushed work in a worktree, or None."""
        if not self.git_ops.is_worktree(path):
            return None
        try:
            changes = self.git_ops.changes_count(path)
        except git.exc.GitCommandError as e:
            logger.debug(f"Cannot inspect {path}: {format_git_error('status', e)}")
            return None
        if changes:
            return f"{changes} uncommitted change{'s' if changes != 1 else ''}"
        if self.git_ops.has_unpushed(path):
            return "unpushed commits"
        return None
