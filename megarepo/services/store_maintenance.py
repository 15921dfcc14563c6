"""Store-level commands: add, fetch, status, ls."""

from typing import TYPE_CHECKING, List, Optional

import git

from megarepo.exceptions import MegarepoError
from megarepo.models.results import StoreRepoResult, StoreWorktreeStatus
from megarepo.models.source import RepoKey
from megarepo.services.git.operations import GitOperations, format_git_error
from megarepo.services.source_resolver import parse_source_string, require_remote, resolve_clone_url
from megarepo.services.store import Store
from megarepo.utils.logging import get_logger
from megarepo.utils.threading import run_parallel

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)


class StoreMaintenance:
    """Operations on the shared store that are not tied to one workspace."""

    def __init__(self, config: "Config", store: Optional[Store] = None,
                 git_ops: Optional[GitOperations] = None):
        self.config = config
        self.store = store or Store(config.store_path)
        self.git_ops = git_ops or GitOperations(config)

    def add(self, source: str, dry_run: bool = False) -> StoreRepoResult:
        """Clone a repository into the store without linking it anywhere.

        Raises:
            InvalidSourceError: source matches no known form
            LocalPathNotAddableError: source is a local path
        """
        remote = require_remote(parse_source_string(source), raw=source)
        key = remote.repo_key
        if self.store.has_bare_repo(key):
            return StoreRepoResult(repo=str(key), status="already_present")
        url = resolve_clone_url(remote, self.config.git_protocol)
        if dry_run:
            return StoreRepoResult(repo=str(key), status="would clone", message=url)

        with self.store.lock():
            try:
                self.git_ops.clone_bare(url, self.store.bare_repo_path(key))
            except MegarepoError as e:
                return StoreRepoResult(repo=str(key), status="error", message=str(e))
        return StoreRepoResult(repo=str(key), status="cloned", message=url)

    def fetch(self, dry_run: bool = False) -> List[StoreRepoResult]:
        """Fetch every bare repository in the store."""
        repos = self.store.list_repos()
        if dry_run:
            return [StoreRepoResult(repo=str(key), status="would fetch") for key in repos]

        def _fetch(key: RepoKey) -> StoreRepoResult:
            try:
                self.git_ops.fetch(self.store.bare_repo_path(key))
                return StoreRepoResult(repo=str(key), status="fetched")
            except MegarepoError as e:
                logger.error(f"Fetch failed for {key}: {e}")
                return StoreRepoResult(repo=str(key), status="error", message=str(e))

        with self.store.lock():
            results = run_parallel(
                _fetch,
                [(str(key), key) for key in repos],
                workers=self.config.workers,
                sequential=self.config.sequential,
            )
        return [results[str(key)] for key in repos]

    def status(self) -> List[StoreWorktreeStatus]:
        """Every worktree in the store with its dirty/unpushed state."""
        statuses = []
        for worktree in self.store.list_worktrees():
            entry = StoreWorktreeStatus(
                repo=str(worktree.repo_key),
                ref_type=worktree.ref_type.value,
                ref=worktree.ref,
                path=worktree.path,
            )
            if not self.git_ops.is_worktree(worktree.path):
                entry.broken = True
            else:
                try:
                    entry.changes_count = self.git_ops.changes_count(worktree.path)
                    entry.is_dirty = entry.changes_count > 0
                    entry.has_unpushed = self.git_ops.has_unpushed(worktree.path)
                except git.exc.GitCommandError as e:
                    logger.warning(f"Could not inspect {worktree.path}: {format_git_error('status', e)}")
                    entry.broken = True
            statuses.append(entry)
        return statuses

    def list_repos(self) -> List[str]:
        return [str(key) for key in self.store.list_repos()]
