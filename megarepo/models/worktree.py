"""Store worktree models."""

from dataclasses import dataclass

from megarepo.models.source import RefType, RepoKey


@dataclass(frozen=True)
class StoreWorktree:
    """A worktree in the shared store, addressed by (repo_key, ref_type, ref)."""

    repo_key: RepoKey
    ref_type: RefType
    ref: str
    path: str

    @property
    def triple(self) -> tuple:
        return (self.repo_key, self.ref_type, self.ref)

    def __str__(self) -> str:
        return f"{self.repo_key} {self.ref_type.value}/{self.ref} @ {self.path}"
