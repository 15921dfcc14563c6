"""Member source models"""
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Union


class RefType(Enum):
    """Kind of ref a store worktree is checked out at (store path segment)."""
    HEADS = "heads"
    TAGS = "tags"
    COMMITS = "commits"


@dataclass(frozen=True)
class RepoKey:
    """Store identity of a remote repository."""
    host: str
    owner: str
    repo: str

    def __str__(self) -> str:
        return f"{self.host}/{self.owner}/{self.repo}"


@dataclass(frozen=True)
class RemoteSource:
    """A member backed by a remote git repository."""
    url: str
    ref: Optional[str]  # None = remote default branch
    repo_key: RepoKey
    shorthand: bool = False  # declared as owner/repo

    is_local = False

    def __str__(self) -> str:
        return f"{self.url}#{self.ref}" if self.ref else self.url


@dataclass(frozen=True)
class LocalSource:
    """A member that links to a directory on this machine."""
    path: str

    is_local = True

    def __str__(self) -> str:
        return self.path


SourceSpec = Union[RemoteSource, LocalSource]
