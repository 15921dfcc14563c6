"""Custom exceptions for megarepo"""

from typing import List, Optional


class MegarepoError(Exception):
    """Base exception for all megarepo errors."""
    pass


class ConfigError(MegarepoError):
    """Raised when megarepo.json or megarepo.lock cannot be read or is malformed."""
    pass


class InvalidSourceError(MegarepoError):
    """Exception raised when a member source string matches no known form."""

    def __init__(self, source: str, message: Optional[str] = None):
        self.source = source
        error_msg = f"Invalid source '{source}'"
        if message:
            error_msg += f": {message}"
        super().__init__(error_msg)


class LocalPathNotAddableError(MegarepoError):
    """Exception raised when a local path is handed to a store-mutating operation."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Local path '{source}' cannot be added to the store")


class NoCloneUrlResolvableError(MegarepoError):
    """Exception raised when no host/owner/repo can be derived from a source."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Cannot resolve a clone URL for '{source}'")


class GitOperationError(MegarepoError):
    """Exception raised for errors in Git operations."""

    def __init__(self, operation: str, target: Optional[str] = None, message: Optional[str] = None,
                 hint: Optional[str] = None):
        self.operation = operation
        self.target = target
        self.message = message
        self.hint = hint

        error_msg = f"Git operation '{operation}' failed"
        if target:
            error_msg += f" for '{target}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class NetworkError(GitOperationError):
    """Exception raised when a clone or fetch fails after all retries."""
    pass


class BrokenWorktreeError(GitOperationError):
    """Exception raised when an expected worktree directory has no .git."""

    def __init__(self, path: str):
        self.path = path
        super().__init__("open_worktree", path, "Worktree directory exists but has no .git")


class MissingBareRepoError(GitOperationError):
    """Exception raised when a bare repository is required but absent from the store."""

    def __init__(self, repo: str, message: Optional[str] = None):
        self.repo = repo
        super().__init__("open_bare_repo", repo, message or "Bare repository not found in store")


class LockFileMissingError(MegarepoError):
    """Exception raised when a lock file is required but absent."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(message or f"Lock file not found: {path}")


class LockFileStaleError(MegarepoError):
    """Exception raised when the lock file does not cover exactly the configured members."""

    def __init__(self, added: List[str], removed: List[str]):
        self.added = list(added)
        self.removed = list(removed)

        parts = []
        if self.added:
            parts.append(f"missing from lock: {', '.join(self.added)}")
        if self.removed:
            parts.append(f"no longer in config: {', '.join(self.removed)}")
        super().__init__("Lock file is stale (" + "; ".join(parts) + ")")


class DirtyWorktreeBlocksRemovalError(MegarepoError):
    """Exception raised when a worktree cannot be removed because it has local work."""

    def __init__(self, path: str, changes: int = 0, unpushed: bool = False):
        self.path = path
        self.changes = changes
        self.unpushed = unpushed

        reasons = []
        if changes:
            reasons.append(f"{changes} uncommitted change{'s' if changes != 1 else ''}")
        if unpushed:
            reasons.append("unpushed commits")
        detail = " and ".join(reasons) or "local work"
        super().__init__(f"Worktree {path} has {detail} (use --force to override)")


class WorktreeInUseError(MegarepoError):
    """Exception raised when removing a worktree that a lock file references."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Worktree {path} is referenced by a lock file")


class CyclicMegarepoNestingError(MegarepoError):
    """Exception raised when a megarepo transitively contains itself."""

    def __init__(self, chain: List[str]):
        self.chain = list(chain)
        super().__init__("Cyclic megarepo nesting: " + " -> ".join(self.chain))


class PermissionDeniedError(MegarepoError):
    """Exception raised when the filesystem refuses a store or workspace write."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        error_msg = f"Permission denied: {path}"
        if message:
            error_msg += f" ({message})"
        super().__init__(error_msg)
