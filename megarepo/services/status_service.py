"""Workspace status and drift diagnosis."""

import os
from pathlib import Path
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Tuple, Union

import git

from megarepo.constants import MEMBERS_DIR, SHORT_SHA_LENGTH
from megarepo.exceptions import MegarepoError
from megarepo.models.lock import LockEntry, LockFile
from megarepo.models.source import LocalSource, RefType, SourceSpec
from megarepo.models.status import (
    CommitDrift,
    GitStatus,
    LockInfo,
    LockStaleness,
    MemberStatus,
    PROBLEM_PRIORITY,
    Problem,
    ProblemKind,
    RefMismatch,
    SymlinkDrift,
    WorkspaceStatus,
)
from megarepo.models.worktree import StoreWorktree
from megarepo.services.config_loader import is_megarepo, load_config, resolve_sources
from megarepo.services.git.operations import GitOperations, format_git_error
from megarepo.services.lock_service import LockService, check_staleness
from megarepo.services.store import Store
from megarepo.utils.logging import get_logger
from megarepo.utils.threading import run_parallel

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)


def read_link_target(link: Path) -> Optional[str]:
    """Absolute target of a symlink, or None if link is not a symlink."""
    if not os.path.islink(link):
        return None
    target = os.readlink(link)
    if not os.path.isabs(target):
        target = os.path.join(os.path.dirname(link), target)
    return os.path.normpath(target)


def lock_accepts(entry: LockEntry, decoded: StoreWorktree, head: Optional[str]) -> bool:
    """Whether a symlink to `decoded` is a valid materialisation of `entry`.

    Both the ref worktree and the commits/<locked sha> worktree are accepted.
    A pinned entry only accepts the ref worktree while it sits on the pinned commit.
    """
    if decoded.ref_type is RefType.COMMITS and decoded.ref == entry.commit:
        return True
    if decoded.ref != entry.ref:
        return False
    if entry.pinned:
        return head == entry.commit
    return True


class StatusService:
    """Builds the recursive member status tree and classifies problems."""

    def __init__(self, config: "Config", store: Optional[Store] = None,
                 git_ops: Optional[GitOperations] = None):
        self.config = config
        self.store = store or Store(config.store_path)
        self.git_ops = git_ops or GitOperations(config)

    def get_status(self, root: Union[str, Path]) -> WorkspaceStatus:
        """Diagnose the workspace at root, recursing into nested megarepos."""
        root = Path(root).resolve()
        members, staleness, lock = self._workspace_members(root, frozenset({str(root)}))

        problems = self._collect_problems(members, staleness)
        problems.sort(key=lambda p: PROBLEM_PRIORITY[p.kind])

        reasons = self._sync_reasons(members, staleness)

        last_sync = None
        if lock and lock.members:
            stamps = [e.locked_at for e in lock.members.values() if e.locked_at]
            last_sync = max(stamps) if stamps else None

        return WorkspaceStatus(
            name=root.name,
            root=str(root),
            members=members,
            lock_staleness=staleness,
            problems=problems,
            sync_needed=bool(problems),
            sync_reasons=reasons,
            last_sync_time=last_sync,
        )

    @staticmethod
    def _has_remote(members: List[MemberStatus]) -> bool:
        return any(not m.is_local for m in members)

    def _workspace_members(
        self, root: Path, ancestry: FrozenSet[str]
    ) -> Tuple[List[MemberStatus], LockStaleness, Optional[LockFile]]:
        config = load_config(root)
        sources = resolve_sources(root, config)
        lock = LockService(root).read()
        remote_names = [name for name, src in sources.items() if not isinstance(src, LocalSource)]
        staleness = check_staleness(lock, remote_names)

        def _one(item):
            name, source = item
            entry = lock.get(name) if lock and not isinstance(source, LocalSource) else None
            return self._member_status(root, name, config.members[name], source, entry, ancestry)

        results = run_parallel(
            _one,
            [(name, (name, src)) for name, src in sources.items()],
            workers=self.config.workers,
            sequential=self.config.sequential,
        )
        members = [results[name] for name in sources]
        return members, staleness, lock

    def _member_status(self, root: Path, name: str, raw_source: str, source: SourceSpec,
                       entry: Optional[LockEntry], ancestry: FrozenSet[str]) -> MemberStatus:
        link = root / MEMBERS_DIR / name
        target = read_link_target(link)
        is_local = isinstance(source, LocalSource)

        status = MemberStatus(
            name=name,
            exists=False,
            symlink_exists=target is not None,
            source=raw_source,
            is_local=is_local,
            lock_info=LockInfo(ref=entry.ref, commit=entry.commit, pinned=entry.pinned) if entry else None,
        )
        if target is None:
            return status

        if is_local:
            status.exists = os.path.isdir(target)
        else:
            status.exists = self.git_ops.is_worktree(target)
        if not status.exists:
            return status

        decoded = None if is_local else self.store.decode_path(target)
        if decoded:
            status.ref_type = decoded.ref_type.value
            status.ref = decoded.ref

        if self.git_ops.is_worktree(target):
            try:
                status.git_status = self._git_status(target)
            except git.exc.GitCommandError as e:
                status.error = format_git_error("status", e)
                logger.warning(f"Could not read git state of {name}: {status.error}")

        head = status.git_status.commit if status.git_status else None
        if decoded and status.git_status:
            status.ref_mismatch = self._ref_mismatch(target, decoded, status.git_status)

        if entry is not None:
            if decoded is None:
                # Symlink leads outside the store layout
                status.symlink_drift = SymlinkDrift(symlink_ref=target, expected_ref=entry.ref)
            elif not lock_accepts(entry, decoded, head):
                expected = entry.commit if entry.pinned else entry.ref
                status.symlink_drift = SymlinkDrift(
                    symlink_ref=decoded.ref,
                    expected_ref=expected,
                    actual_git_branch=status.git_status.branch if status.git_status else None,
                )
            if (not entry.pinned and head and head != entry.commit
                    and not status.ref_mismatch and not status.symlink_drift):
                status.commit_drift = CommitDrift(local_commit=head, locked_commit=entry.commit)

        real_target = os.path.realpath(target)
        if is_megarepo(real_target):
            status.is_megarepo = True
            if real_target in ancestry:
                logger.debug(f"Not descending into {name}: already visited on this path")
            else:
                try:
                    nested, nested_staleness, _ = self._workspace_members(
                        Path(real_target), ancestry | {real_target})
                    status.nested_members = nested
                    status.nested_lock_staleness = nested_staleness
                except MegarepoError as e:
                    status.error = f"Cannot read nested megarepo: {e}"
                    logger.warning(f"{name}: {status.error}")
        return status

    def _git_status(self, path: str) -> GitStatus:
        changes = self.git_ops.changes_count(path)
        head = self.git_ops.head_commit(path)
        return GitStatus(
            is_dirty=changes > 0,
            changes_count=changes,
            has_unpushed=self.git_ops.has_unpushed(path),
            branch=self.git_ops.current_branch(path),
            short_rev=head[:SHORT_SHA_LENGTH] if head else None,
            commit=head,
        )

    def _ref_mismatch(self, path: str, decoded: StoreWorktree, git_status: GitStatus) -> Optional[RefMismatch]:
        branch = git_status.branch
        head = git_status.commit or ""
        actual = branch or git_status.short_rev or "HEAD"

        if decoded.ref_type is RefType.HEADS:
            if branch != decoded.ref:
                return RefMismatch(expected_ref=decoded.ref, actual_ref=actual, is_detached=branch is None)
            return None

        if branch is not None:
            return RefMismatch(expected_ref=decoded.ref, actual_ref=branch, is_detached=False)

        if decoded.ref_type is RefType.COMMITS:
            expected_commit = decoded.ref
        else:
            expected_commit = self.git_ops.resolve_commit(path, f"refs/tags/{decoded.ref}")
        if expected_commit and head != expected_commit:
            return RefMismatch(expected_ref=decoded.ref, actual_ref=actual, is_detached=True)
        return None

    # Problem classification

    def _flatten(self, members: List[MemberStatus], prefix: str = ""):
        """Yield (path, member) for the whole tree, plus nested staleness per nested workspace."""
        for member in members:
            path = f"{prefix}{member.name}"
            yield path, member
            if member.nested_members is not None:
                yield from self._flatten(member.nested_members, prefix=f"{path}/")

    def _nested_workspaces(self, members: List[MemberStatus], prefix: str = ""):
        for member in members:
            path = f"{prefix}{member.name}"
            if member.nested_members is not None and member.nested_lock_staleness is not None:
                yield path, member.nested_members, member.nested_lock_staleness
                yield from self._nested_workspaces(member.nested_members, prefix=f"{path}/")

    def _collect_problems(self, members: List[MemberStatus], staleness: LockStaleness) -> List[Problem]:
        problems: List[Problem] = []
        not_synced: List[str] = []
        dirty: List[str] = []
        unpushed: List[str] = []

        for path, member in self._flatten(members):
            if member.ref_mismatch:
                problems.append(Problem(ProblemKind.REF_MISMATCH, [path], ref_mismatch=member.ref_mismatch))
            if member.symlink_drift:
                problems.append(Problem(ProblemKind.SYMLINK_DRIFT, [path], symlink_drift=member.symlink_drift))
            if member.commit_drift:
                problems.append(Problem(ProblemKind.COMMIT_DRIFT, [path], commit_drift=member.commit_drift))
            if not member.exists:
                not_synced.append(path)
            if member.git_status and member.git_status.is_dirty:
                dirty.append(path)
            if member.git_status and member.git_status.has_unpushed:
                unpushed.append(path)

        if not_synced:
            problems.append(Problem(ProblemKind.NOT_SYNCED, not_synced))
        if dirty:
            problems.append(Problem(ProblemKind.DIRTY, dirty))
        if unpushed:
            problems.append(Problem(ProblemKind.UNPUSHED, unpushed))

        workspaces = [("", members, staleness)] + list(self._nested_workspaces(members))
        for path, ws_members, ws_staleness in workspaces:
            label = [path] if path else []
            if not ws_staleness.exists:
                if self._has_remote(ws_members):
                    problems.append(Problem(ProblemKind.LOCK_MISSING, label, staleness=ws_staleness))
            elif ws_staleness.is_stale:
                problems.append(Problem(ProblemKind.LOCK_STALE, label, staleness=ws_staleness))
        return problems

    def _sync_reasons(self, members: List[MemberStatus], staleness: LockStaleness) -> List[str]:
        by_kind: Dict[ProblemKind, List[str]] = {kind: [] for kind in ProblemKind}

        for path, member in self._flatten(members):
            if member.ref_mismatch:
                by_kind[ProblemKind.REF_MISMATCH].append(
                    f"Member '{path}' git HEAD is '{member.ref_mismatch.actual_ref}' "
                    f"but store path expects '{member.ref_mismatch.expected_ref}'")
            if member.symlink_drift:
                by_kind[ProblemKind.SYMLINK_DRIFT].append(
                    f"Member '{path}' symlink points to '{member.symlink_drift.symlink_ref}' "
                    f"but lock expects '{member.symlink_drift.expected_ref}'")
            if member.commit_drift:
                by_kind[ProblemKind.COMMIT_DRIFT].append(
                    f"Member '{path}' commit {member.commit_drift.local_commit[:SHORT_SHA_LENGTH]} "
                    f"differs from lock {member.commit_drift.locked_commit[:SHORT_SHA_LENGTH]}")
            if not member.symlink_exists:
                by_kind[ProblemKind.NOT_SYNCED].append(f"Member '{path}' symlink missing")
            elif not member.exists:
                by_kind[ProblemKind.NOT_SYNCED].append(f"Member '{path}' worktree missing")
            if member.git_status and member.git_status.is_dirty:
                count = member.git_status.changes_count
                by_kind[ProblemKind.DIRTY].append(
                    f"Member '{path}' has {count} uncommitted change{'s' if count != 1 else ''}")
            if member.git_status and member.git_status.has_unpushed:
                by_kind[ProblemKind.UNPUSHED].append(f"Member '{path}' has unpushed commits")

        workspaces = [("", members, staleness)] + list(self._nested_workspaces(members))
        for path, ws_members, ws_staleness in workspaces:
            prefix = f"{path}/" if path else ""
            if not ws_staleness.exists:
                if self._has_remote(ws_members):
                    suffix = f" in '{path}'" if path else ""
                    by_kind[ProblemKind.LOCK_MISSING].append(f"Lock file missing{suffix}")
                continue
            for name in ws_staleness.missing_from_lock:
                by_kind[ProblemKind.LOCK_STALE].append(f"Member '{prefix}{name}' not in lock file")
            for name in ws_staleness.extra_in_lock:
                by_kind[ProblemKind.LOCK_STALE].append(f"Lock file has extra member '{prefix}{name}'")

        return [reason for kind in ProblemKind for reason in by_kind[kind]]
