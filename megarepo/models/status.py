"""Status and drift models"""
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class GitStatus:
    """Live git state of a member worktree."""
    is_dirty: bool
    changes_count: int
    has_unpushed: bool
    branch: Optional[str]  # None when HEAD is detached
    short_rev: Optional[str]
    commit: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "isDirty": self.is_dirty,
            "changesCount": self.changes_count,
            "hasUnpushed": self.has_unpushed,
            "branch": self.branch,
            "shortRev": self.short_rev,
        }


@dataclass
class LockInfo:
    ref: str
    commit: str
    pinned: bool

    def to_dict(self) -> dict:
        return {"ref": self.ref, "commit": self.commit, "pinned": self.pinned}


@dataclass
class SymlinkDrift:
    """The symlink points at a different ref than the lock records."""
    symlink_ref: str
    expected_ref: str
    actual_git_branch: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"symlinkRef": self.symlink_ref, "expectedRef": self.expected_ref}
        if self.actual_git_branch:
            data["actualGitBranch"] = self.actual_git_branch
        return data


@dataclass
class RefMismatch:
    """The worktree's HEAD is not at the ref its store path encodes."""
    expected_ref: str
    actual_ref: str
    is_detached: bool

    def to_dict(self) -> dict:
        return {
            "expectedRef": self.expected_ref,
            "actualRef": self.actual_ref,
            "isDetached": self.is_detached,
        }


@dataclass
class CommitDrift:
    """The worktree moved away from the locked commit."""
    local_commit: str
    locked_commit: str

    def to_dict(self) -> dict:
        return {"localCommit": self.local_commit, "lockedCommit": self.locked_commit}


@dataclass
class MemberStatus:
    """Diagnosed state of one member, recursive for nested megarepos."""
    name: str
    exists: bool
    symlink_exists: bool
    source: str
    is_local: bool
    lock_info: Optional[LockInfo] = None
    is_megarepo: bool = False
    nested_members: Optional[List["MemberStatus"]] = None
    nested_lock_staleness: Optional["LockStaleness"] = None
    git_status: Optional[GitStatus] = None
    symlink_drift: Optional[SymlinkDrift] = None
    ref_mismatch: Optional[RefMismatch] = None
    commit_drift: Optional[CommitDrift] = None
    ref_type: Optional[str] = None
    ref: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "exists": self.exists,
            "symlinkExists": self.symlink_exists,
            "source": self.source,
            "isLocal": self.is_local,
            "lockInfo": self.lock_info.to_dict() if self.lock_info else None,
            "isMegarepo": self.is_megarepo,
            "nestedMembers": (
                [m.to_dict() for m in self.nested_members] if self.nested_members is not None else None
            ),
            "gitStatus": self.git_status.to_dict() if self.git_status else None,
        }
        if self.symlink_drift:
            data["symlinkDrift"] = self.symlink_drift.to_dict()
        if self.ref_mismatch:
            data["refMismatch"] = self.ref_mismatch.to_dict()
        if self.commit_drift:
            data["commitDrift"] = self.commit_drift.to_dict()
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class LockStaleness:
    exists: bool
    missing_from_lock: List[str] = field(default_factory=list)
    extra_in_lock: List[str] = field(default_factory=list)

    @property
    def is_stale(self) -> bool:
        return bool(self.missing_from_lock or self.extra_in_lock)

    def to_dict(self) -> dict:
        return {
            "exists": self.exists,
            "missingFromLock": list(self.missing_from_lock),
            "extraInLock": list(self.extra_in_lock),
        }


class ProblemKind(Enum):
    """Problem taxonomy, declared in priority order."""
    REF_MISMATCH = "ref_mismatch"
    SYMLINK_DRIFT = "symlink_drift"
    COMMIT_DRIFT = "commit_drift"
    NOT_SYNCED = "not_synced"
    DIRTY = "dirty"
    UNPUSHED = "unpushed"
    LOCK_MISSING = "lock_missing"
    LOCK_STALE = "lock_stale"


PROBLEM_PRIORITY: Dict[ProblemKind, int] = {kind: index for index, kind in enumerate(ProblemKind)}

ERROR_KINDS = {ProblemKind.REF_MISMATCH, ProblemKind.SYMLINK_DRIFT}


@dataclass
class Problem:
    """A diagnosed divergence, with enough detail to suggest a fix."""
    kind: ProblemKind
    members: List[str] = field(default_factory=list)
    symlink_drift: Optional[SymlinkDrift] = None
    ref_mismatch: Optional[RefMismatch] = None
    commit_drift: Optional[CommitDrift] = None
    staleness: Optional[LockStaleness] = None
    changes_count: int = 0

    @property
    def severity(self) -> str:
        if self.kind in ERROR_KINDS:
            return "error"
        if self.kind in (ProblemKind.DIRTY, ProblemKind.UNPUSHED):
            return "info"
        return "warning"

    @property
    def message(self) -> str:
        names = ", ".join(self.members)
        if self.kind is ProblemKind.REF_MISMATCH and self.ref_mismatch:
            return (f"{names}: git HEAD is '{self.ref_mismatch.actual_ref}' "
                    f"but store path expects '{self.ref_mismatch.expected_ref}'")
        if self.kind is ProblemKind.SYMLINK_DRIFT and self.symlink_drift:
            return (f"{names}: symlink points to '{self.symlink_drift.symlink_ref}' "
                    f"but lock expects '{self.symlink_drift.expected_ref}'")
        if self.kind is ProblemKind.COMMIT_DRIFT and self.commit_drift:
            return (f"{names}: HEAD {self.commit_drift.local_commit[:7]} "
                    f"differs from locked {self.commit_drift.locked_commit[:7]}")
        if self.kind is ProblemKind.NOT_SYNCED:
            return f"{len(self.members)} member(s) not synced: {names}"
        if self.kind is ProblemKind.DIRTY:
            return f"{len(self.members)} member(s) have uncommitted changes: {names}"
        if self.kind is ProblemKind.UNPUSHED:
            return f"{len(self.members)} member(s) have unpushed commits: {names}"
        if self.kind is ProblemKind.LOCK_MISSING:
            return "Lock file missing"
        if self.kind is ProblemKind.LOCK_STALE and self.staleness:
            parts = []
            if self.staleness.missing_from_lock:
                parts.append(f"missing from lock: {', '.join(self.staleness.missing_from_lock)}")
            if self.staleness.extra_in_lock:
                parts.append(f"extra in lock: {', '.join(self.staleness.extra_in_lock)}")
            return "Lock file is stale (" + "; ".join(parts) + ")"
        return self.kind.value

    def fix_hint(self) -> str:
        if self.kind is ProblemKind.REF_MISMATCH and self.ref_mismatch:
            name = self.members[0] if self.members else "<member>"
            if self.ref_mismatch.is_detached:
                return f"git checkout {self.ref_mismatch.expected_ref}"
            return f"megarepo pin {name} -c {self.ref_mismatch.actual_ref}  (or: git checkout {self.ref_mismatch.expected_ref})"
        if self.kind in (ProblemKind.SYMLINK_DRIFT, ProblemKind.NOT_SYNCED,
                         ProblemKind.LOCK_MISSING, ProblemKind.LOCK_STALE):
            return "megarepo sync"
        if self.kind is ProblemKind.COMMIT_DRIFT:
            return "megarepo sync (records the current commit in the lock)"
        if self.kind is ProblemKind.DIRTY:
            return "commit or stash the changes"
        if self.kind is ProblemKind.UNPUSHED:
            return "git push"
        return ""

    def to_dict(self) -> dict:
        data = {
            "kind": self.kind.value,
            "severity": self.severity,
            "members": list(self.members),
            "message": self.message,
            "fix": self.fix_hint(),
        }
        if self.staleness:
            data["staleness"] = self.staleness.to_dict()
        return data


@dataclass
class WorkspaceStatus:
    """Diagnosis of a whole workspace."""
    name: str
    root: str
    members: List[MemberStatus]
    lock_staleness: Optional[LockStaleness]
    problems: List[Problem] = field(default_factory=list)
    sync_needed: bool = False
    sync_reasons: List[str] = field(default_factory=list)
    last_sync_time: Optional[str] = None

    @property
    def highest_severity_problem(self) -> Optional[Problem]:
        return self.problems[0] if self.problems else None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "root": self.root,
            "members": [m.to_dict() for m in self.members],
            "lockStaleness": self.lock_staleness.to_dict() if self.lock_staleness else None,
            "problems": [p.to_dict() for p in self.problems],
            "syncNeeded": self.sync_needed,
            "syncReasons": list(self.sync_reasons),
            "lastSyncTime": self.last_sync_time,
        }
