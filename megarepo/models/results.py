"""Sync, GC and store operation result models"""
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional


class SyncStatus(Enum):
    """Outcome of reconciling one member."""
    CLONED = "cloned"
    SYNCED = "synced"
    UPDATED = "updated"
    LOCKED = "locked"
    ALREADY_SYNCED = "already_synced"
    REMOVED = "removed"
    SKIPPED = "skipped"
    ERROR = "error"


# Dry-run labels for statuses that would have written something
DRY_RUN_LABELS = {
    SyncStatus.CLONED: "would clone",
    SyncStatus.SYNCED: "would sync",
    SyncStatus.UPDATED: "would update",
    SyncStatus.LOCKED: "would lock",
    SyncStatus.REMOVED: "would remove",
}


@dataclass
class MemberSyncResult:
    """Result of syncing one member."""
    name: str
    status: SyncStatus
    message: Optional[str] = None
    commit: Optional[str] = None
    previous_commit: Optional[str] = None
    ref: Optional[str] = None
    lock_updated: bool = False
    dry_run: bool = False

    @property
    def label(self) -> str:
        if self.dry_run and self.status in DRY_RUN_LABELS:
            return DRY_RUN_LABELS[self.status]
        return self.status.value

    def to_dict(self) -> dict:
        data = {"name": self.name, "status": self.label}
        if self.message:
            data["message"] = self.message
        if self.commit:
            data["commit"] = self.commit
        if self.previous_commit:
            data["previousCommit"] = self.previous_commit
        if self.ref:
            data["ref"] = self.ref
        if self.lock_updated:
            data["lockUpdated"] = True
        return data


@dataclass
class SyncSummary:
    cloned: int = 0
    synced: int = 0
    updated: int = 0
    locked: int = 0
    already_synced: int = 0
    removed: int = 0
    skipped: int = 0
    errors: int = 0

    @classmethod
    def from_results(cls, results: List[MemberSyncResult]) -> "SyncSummary":
        summary = cls()
        for result in results:
            if result.status is SyncStatus.ERROR:
                summary.errors += 1
            else:
                attr = result.status.value
                setattr(summary, attr, getattr(summary, attr) + 1)
        return summary

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


@dataclass
class MegarepoSyncResult:
    """Sync result tree: one node per (possibly nested) megarepo."""
    root: str
    results: List[MemberSyncResult] = field(default_factory=list)
    nested_megarepos: List[str] = field(default_factory=list)
    nested_results: List["MegarepoSyncResult"] = field(default_factory=list)
    lock_written: bool = False
    dry_run: bool = False

    def flatten(self) -> List[MemberSyncResult]:
        """All member results in the tree, outermost first."""
        flat = list(self.results)
        for nested in self.nested_results:
            flat.extend(nested.flatten())
        return flat

    @property
    def has_errors(self) -> bool:
        return any(r.status is SyncStatus.ERROR for r in self.flatten())

    @property
    def summary(self) -> SyncSummary:
        return SyncSummary.from_results(self.flatten())

    def to_dict(self) -> dict:
        return {
            "root": self.root,
            "results": [r.to_dict() for r in self.results],
            "nestedMegarepos": list(self.nested_megarepos),
            "nestedResults": [n.to_dict() for n in self.nested_results],
            "lockWritten": self.lock_written,
            "dryRun": self.dry_run,
        }


class GcStatus(Enum):
    """Outcome of considering one store worktree for removal."""
    REMOVED = "removed"
    WOULD_REMOVE = "would_remove"
    SKIPPED_DIRTY = "skipped_dirty"
    SKIPPED_IN_USE = "skipped_in_use"
    ERROR = "error"


@dataclass
class GcWorktreeResult:
    repo: str
    ref_type: str
    ref: str
    path: str
    status: GcStatus
    message: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "repo": self.repo,
            "refType": self.ref_type,
            "ref": self.ref,
            "path": self.path,
            "status": self.status.value,
        }
        if self.message:
            data["message"] = self.message
        return data


@dataclass
class GcResult:
    results: List[GcWorktreeResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    removed_bare_repos: List[str] = field(default_factory=list)
    dry_run: bool = False

    def count(self, status: GcStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def has_errors(self) -> bool:
        return self.count(GcStatus.ERROR) > 0

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "warnings": list(self.warnings),
            "removedBareRepos": list(self.removed_bare_repos),
            "dryRun": self.dry_run,
            "summary": {status.value: self.count(status) for status in GcStatus},
        }


@dataclass
class StoreRepoResult:
    """Outcome of a store-level operation (add/fetch) on one repository."""
    repo: str
    status: str  # cloned, already_present, fetched, error
    message: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"repo": self.repo, "status": self.status}
        if self.message:
            data["message"] = self.message
        return data


@dataclass
class StoreWorktreeStatus:
    repo: str
    ref_type: str
    ref: str
    path: str
    is_dirty: bool = False
    changes_count: int = 0
    has_unpushed: bool = False
    broken: bool = False

    def to_dict(self) -> dict:
        return {
            "repo": self.repo,
            "refType": self.ref_type,
            "ref": self.ref,
            "path": self.path,
            "isDirty": self.is_dirty,
            "changesCount": self.changes_count,
            "hasUnpushed": self.has_unpushed,
            "broken": self.broken,
        }


@dataclass
class AddMemberResult:
    """Outcome of adding a member to megarepo.json (and optionally syncing it)."""
    name: str
    source: str
    sync_result: Optional[MegarepoSyncResult] = None

    @property
    def member_result(self) -> Optional[MemberSyncResult]:
        if self.sync_result is None:
            return None
        return next((r for r in self.sync_result.results if r.name == self.name), None)

    @property
    def has_errors(self) -> bool:
        member = self.member_result
        return member is not None and member.status is SyncStatus.ERROR

    def to_dict(self) -> dict:
        data = {"member": self.name, "source": self.source, "synced": self.sync_result is not None}
        member = self.member_result
        if member is not None:
            data["sync"] = member.to_dict()
        return data


@dataclass
class ExecResult:
    """Outcome of running a shell command in one member directory."""
    name: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }
