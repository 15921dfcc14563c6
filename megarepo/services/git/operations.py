"""Git operations against store repositories and member worktrees."""

import os
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Tuple, Union

import git

from megarepo.constants import DEFAULT_FETCH_REFSPEC, REMOTE_NAME
from megarepo.exceptions import (
    BrokenWorktreeError,
    GitOperationError,
    MissingBareRepoError,
    NetworkError,
)
from megarepo.models.source import RefType
from megarepo.utils.logging import get_logger
from megarepo.utils.retry import call_with_retry

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)

PathLike = Union[str, Path]

# Never block on a credential prompt from a worker thread
_NETWORK_ENV = {"GIT_TERMINAL_PROMPT": "0"}

_NON_TRANSIENT_MARKERS = (
    "repository not found",
    "does not exist",
    "not found",
    "could not read username",
    "authentication failed",
    "invalid credentials",
    "permission denied",
    "host key verification failed",
    "ambiguous argument",
    "unknown revision",
    "already exists and is not an empty directory",
)


def git_error_text(e: git.exc.GitCommandError) -> Tuple[str, str]:
    """Extract (stderr, status) from a GitCommandError."""
    stderr = (e.stderr if getattr(e, "stderr", None) else str(e)).strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip()
    stderr = stderr.strip("'").strip()
    status = e.status if getattr(e, "status", None) is not None else "unknown"
    return stderr, str(status)


def format_git_error(command: str, e: git.exc.GitCommandError) -> str:
    stderr, status = git_error_text(e)
    if stderr:
        return f"git {command} failed (exit {status}): {stderr}"
    return f"git {command} failed with exit code {status}"


def interpret_git_error(stderr: str) -> Tuple[str, Optional[str]]:
    """Map raw git stderr to a friendly (message, hint) pair."""
    text = (stderr or "").lower()

    if ("repository not found" in text or "could not read from remote" in text
            or "does not appear to be a git repository" in text):
        return ("Repository not found or access denied",
                "Check the repository URL and your access permissions")
    if ("could not read username" in text or "authentication failed" in text
            or "invalid credentials" in text):
        return ("Authentication required",
                "Configure git credentials or use SSH with an SSH key")
    if "ambiguous argument" in text or "unknown revision" in text or "invalid reference" in text:
        match = re.search(r"(?:ambiguous argument|invalid reference:?) '?([^'\s:]+)", stderr or "")
        ref = match.group(1) if match else "?"
        return (f"Ref '{ref}' not found", "Check available refs with: git ls-remote --refs <url>")
    if "already exists and is not an empty directory" in text:
        return ("Target directory already exists",
                "Remove the directory or choose a different location")
    if ("could not resolve host" in text or "network is unreachable" in text
            or "connection refused" in text or "timed out" in text or "timeout" in text):
        return ("Network error - could not connect to remote",
                "Check your internet connection and the repository URL")
    if "host key verification failed" in text or "no such identity" in text:
        return ("SSH authentication failed",
                "Check your SSH keys and known_hosts, or set git_protocol to https")
    if "permission denied" in text:
        return ("Permission denied",
                "Check filesystem permissions on the store and workspace")
    return (stderr.strip() or "git command failed", None)


def _is_transient(e: BaseException) -> bool:
    if not isinstance(e, git.exc.GitCommandError):
        return False
    stderr, _ = git_error_text(e)
    lowered = stderr.lower()
    return not any(marker in lowered for marker in _NON_TRANSIENT_MARKERS)


class GitOperations:
    """Thin service over the git binary for store and worktree operations."""

    def __init__(self, config: Union["Config", dict]):
        """Initialize the service.

        Args:
            config: Configuration dictionary or Config object
        """
        self.config = config
        self.network_timeout = config.get("network_timeout", 300)
        self.network_retries = config.get("network_retries", 2)

    def _git(self, path: Optional[PathLike] = None) -> git.Git:
        """Get a command wrapper rooted at path. One per call keeps threads independent."""
        return git.Git(str(path) if path is not None else None)

    def _network(self, description: str, func):
        """Run a network git call with timeout, bounded retries and error mapping."""
        try:
            return call_with_retry(
                func,
                retries=self.network_retries,
                description=description,
                exceptions=(git.exc.GitCommandError,),
                should_retry=_is_transient,
            )
        except git.exc.GitCommandError as e:
            stderr, _ = git_error_text(e)
            message, hint = interpret_git_error(stderr)
            logger.debug(f"{description}: {format_git_error(description, e)}")
            raise NetworkError(description, message=message, hint=hint) from e

    # Store (bare repository) operations

    def clone_bare(self, url: str, dest: PathLike) -> None:
        """Clone url as a bare repository at dest.

        The clone lands in a temporary sibling directory and is renamed into
        place, so a failed or timed-out clone never leaves a partial dest.
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = dest.parent / f"{dest.name}.partial-{os.getpid()}"
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)

        def _clone():
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
            self._git().clone("--bare", url, str(staging),
                              kill_after_timeout=self.network_timeout, env=_NETWORK_ENV)

        try:
            self._network(f"clone {url}", _clone)
            staged = self._git(staging)
            staged.config("remote.origin.fetch", DEFAULT_FETCH_REFSPEC)
            staged.fetch(REMOTE_NAME, "--tags", kill_after_timeout=self.network_timeout, env=_NETWORK_ENV)
            os.replace(staging, dest)
            logger.info(f"Cloned {url} into {dest}")
        except git.exc.GitCommandError as e:
            raise NetworkError(f"clone {url}", message=format_git_error("fetch", e)) from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    def fetch(self, bare_path: PathLike) -> None:
        """Refresh remote-tracking refs and tags of a bare repository."""
        self._require_bare(bare_path)
        g = self._git(bare_path)
        self._network(
            f"fetch {bare_path}",
            lambda: g.fetch("--tags", "--prune", REMOTE_NAME,
                            kill_after_timeout=self.network_timeout, env=_NETWORK_ENV),
        )
        logger.debug(f"Fetched {bare_path}")

    def ls_remote_default_branch(self, url: str) -> Optional[str]:
        """Default branch advertised by a remote, via ls-remote --symref."""
        output = self._network(
            f"ls-remote {url}",
            lambda: self._git().ls_remote("--symref", url, "HEAD",
                                          kill_after_timeout=self.network_timeout, env=_NETWORK_ENV),
        )
        for line in output.splitlines():
            match = re.match(r"^ref:\s+refs/heads/(\S+)\s+HEAD$", line.strip())
            if match:
                return match.group(1)
        return None

    def default_branch(self, bare_path: PathLike) -> Optional[str]:
        """Default branch recorded in a bare clone's HEAD."""
        try:
            ref = self._git(bare_path).symbolic_ref("HEAD").strip()
        except git.exc.GitCommandError as e:
            logger.debug(f"Could not read HEAD of {bare_path}: {format_git_error('symbolic-ref', e)}")
            return None
        if ref.startswith("refs/heads/"):
            return ref[len("refs/heads/"):]
        return None

    def resolve_commit(self, repo_path: PathLike, rev: str) -> Optional[str]:
        """Full sha of rev, or None if it does not resolve to a commit."""
        try:
            return self._git(repo_path).rev_parse("--verify", "--quiet", f"{rev}^{{commit}}").strip() or None
        except git.exc.GitCommandError:
            return None

    def resolve_ref(self, bare_path: PathLike, ref: str) -> Optional[Tuple[RefType, str]]:
        """Determine the actual type of ref in a bare repository and its commit.

        Tags are checked first, then remote-tracking branches, then local
        branches. A 40-hex ref that exists as an object is a commit.
        """
        for candidate, ref_type in (
            (f"refs/tags/{ref}", RefType.TAGS),
            (f"refs/remotes/{REMOTE_NAME}/{ref}", RefType.HEADS),
            (f"refs/heads/{ref}", RefType.HEADS),
        ):
            commit = self.resolve_commit(bare_path, candidate)
            if commit:
                return ref_type, commit
        if re.match(r"^[0-9a-f]{40}$", ref):
            commit = self.resolve_commit(bare_path, ref)
            if commit:
                return RefType.COMMITS, commit
        return None

    def has_commit(self, repo_path: PathLike, sha: str) -> bool:
        return self.resolve_commit(repo_path, sha) is not None

    def add_worktree(self, bare_path: PathLike, path: PathLike, ref_type: RefType, ref: str) -> None:
        """Create a worktree for ref at path.

        Branches are checked out attached and tracking origin/<branch>;
        tags and commits are checked out detached.
        """
        self._require_bare(bare_path)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        g = self._git(bare_path)

        try:
            # Drop metadata of worktrees whose directories were deleted by hand
            g.worktree("prune")
            if ref_type is RefType.HEADS:
                remote_ref = f"refs/remotes/{REMOTE_NAME}/{ref}"
                if self.resolve_commit(bare_path, f"refs/heads/{ref}"):
                    g.worktree("add", str(path), ref)
                elif self.resolve_commit(bare_path, remote_ref):
                    g.worktree("add", "--track", "-b", ref, str(path), f"{REMOTE_NAME}/{ref}")
                else:
                    raise GitOperationError("worktree add", ref, f"Branch '{ref}' not found in {bare_path}")
                self._set_upstream(path, ref)
            else:
                g.worktree("add", "--detach", str(path), ref)
        except git.exc.GitCommandError as e:
            stderr, _ = git_error_text(e)
            message, hint = interpret_git_error(stderr)
            raise GitOperationError("worktree add", ref, message, hint) from e

        logger.info(f"Created worktree {path}")

    def _set_upstream(self, worktree_path: Path, branch: str) -> None:
        remote_ref = f"{REMOTE_NAME}/{branch}"
        g = self._git(worktree_path)
        if not self.resolve_commit(worktree_path, f"refs/remotes/{remote_ref}"):
            return
        try:
            g.branch(f"--set-upstream-to={remote_ref}", branch)
            # A fresh worktree may start behind the fetched tip; it has no local work yet
            g.merge("--ff-only", remote_ref)
        except git.exc.GitCommandError as e:
            logger.debug(f"Could not track {remote_ref} in {worktree_path}: {format_git_error('branch', e)}")

    def remove_worktree(self, bare_path: PathLike, path: PathLike, force: bool = False) -> tuple[bool, Optional[str]]:
        """Remove a worktree at the specified path.

        Falls back to deleting the directory and pruning when git refuses
        (e.g. the bare repository no longer knows about the worktree).

        Returns:
            Tuple of (success, error_message). error_message is None on success.
        """
        args = ["remove", str(path)]
        if force:
            args.append("--force")

        try:
            self._git(bare_path).worktree(*args)
            logger.info(f"Removed worktree at {path}")
            return True, None
        except git.exc.GitCommandError as e:
            error_msg = format_git_error("worktree remove", e)
            logger.debug(f"{error_msg}; falling back to directory removal")
        except OSError as e:
            error_msg = f"Unexpected error removing worktree: {e}"
            logger.debug(error_msg)

        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove worktree at {path}: {e}")
            return False, f"{error_msg}; directory removal failed: {e}"

        self.prune_worktrees(bare_path)
        logger.info(f"Removed worktree directory {path}")
        return True, None

    def prune_worktrees(self, bare_path: PathLike) -> tuple[bool, Optional[str]]:
        """Prune orphaned worktree metadata.

        Returns:
            Tuple of (success, error_message). error_message is None on success.
        """
        try:
            self._git(bare_path).worktree("prune")
            return True, None
        except git.exc.GitCommandError as e:
            error_msg = format_git_error("worktree prune", e)
            logger.error(f"Failed to prune worktrees: {error_msg}")
            return False, error_msg
        except OSError as e:
            return False, f"Unexpected error pruning worktrees: {e}"

    # Worktree state

    def is_worktree(self, path: PathLike) -> bool:
        """True when path is a directory with a .git entry (file for worktrees, dir for clones)."""
        return os.path.isdir(path) and os.path.exists(os.path.join(path, ".git"))

    def require_worktree(self, path: PathLike) -> None:
        if os.path.isdir(path) and not os.path.exists(os.path.join(path, ".git")):
            raise BrokenWorktreeError(str(path))

    def head_commit(self, path: PathLike) -> Optional[str]:
        try:
            return self._git(path).rev_parse("HEAD").strip() or None
        except git.exc.GitCommandError:
            return None

    def current_branch(self, path: PathLike) -> Optional[str]:
        """Checked-out branch name, or None when HEAD is detached."""
        try:
            return self._git(path).symbolic_ref("--short", "-q", "HEAD").strip() or None
        except git.exc.GitCommandError:
            return None

    def changes_count(self, path: PathLike) -> int:
        """Number of entries in `git status --porcelain` (staged, modified, untracked)."""
        output = self._git(path).status("--porcelain")
        return sum(1 for line in output.split("\n") if line.strip())

    def has_unpushed(self, path: PathLike) -> bool:
        """True if HEAD has commits its upstream lacks. No upstream counts as False."""
        try:
            output = self._git(path).log("@{upstream}..HEAD", "--oneline")
        except git.exc.GitCommandError:
            return False
        return bool(output.strip())

    def is_ancestor(self, path: PathLike, ancestor: str, descendant: str) -> bool:
        try:
            self._git(path).merge_base("--is-ancestor", ancestor, descendant)
            return True
        except git.exc.GitCommandError:
            return False

    def fast_forward(self, worktree_path: PathLike, branch: str) -> None:
        """Fast-forward a branch worktree to origin/<branch>."""
        try:
            self._git(worktree_path).merge("--ff-only", f"{REMOTE_NAME}/{branch}")
        except git.exc.GitCommandError as e:
            stderr, _ = git_error_text(e)
            raise GitOperationError("merge --ff-only", branch, stderr or "cannot fast-forward") from e

    def remote_url(self, path: PathLike) -> Optional[str]:
        try:
            return self._git(path).config("--get", f"remote.{REMOTE_NAME}.url").strip() or None
        except git.exc.GitCommandError:
            return None

    def _require_bare(self, bare_path: PathLike) -> None:
        if not os.path.isdir(bare_path):
            raise MissingBareRepoError(str(bare_path))
