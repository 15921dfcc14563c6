"""Core entry points for megarepo"""

import signal
import sys
from pathlib import Path
from typing import List, Optional, Union

from rich.console import Console

from megarepo.config import Config
from megarepo.exceptions import ConfigError, LockFileMissingError
from megarepo.models.lock import LockFile
from megarepo.models.results import (
    AddMemberResult,
    ExecResult,
    GcResult,
    MegarepoSyncResult,
    MemberSyncResult,
    StoreRepoResult,
    StoreWorktreeStatus,
)
from megarepo.models.status import WorkspaceStatus
from megarepo.services.config_loader import find_workspace_root, is_megarepo
from megarepo.services.exec_service import ExecService
from megarepo.services.gc_service import GcService, nested_lock_files, workspace_lock_files
from megarepo.services.git import GitOperations
from megarepo.services.lock_service import LockService
from megarepo.services.member_service import MemberService
from megarepo.services.pin_service import PinService
from megarepo.services.status_service import StatusService
from megarepo.services.store import Store
from megarepo.services.store_maintenance import StoreMaintenance
from megarepo.services.sync_service import SyncOptions, SyncService
from megarepo.utils.logging import get_logger

console = Console()
logger = get_logger(__name__)


def _signal_handler(signum, frame):
    """Handle interrupt signals gracefully."""
    if signum == signal.SIGINT:
        print()  # New line after ^C
        console.print("\n[yellow]Interrupted! Cleaning up...[/yellow]")
        sys.exit(130)


def install_signal_handlers() -> None:
    signal.signal(signal.SIGINT, _signal_handler)


class Megarepo:
    """Main class wiring the store, git layer and services together."""

    def __init__(self, config: Union[Config, dict, None] = None):
        """Initialize Megarepo.

        Args:
            config: Configuration dict or Config object (None = defaults)
        """
        if config is None:
            self.config = Config()
        elif isinstance(config, dict):
            self.config = Config.from_dict(config)
        else:
            self.config = config

        self.store = Store(self.config.store_path)
        self.git_ops = GitOperations(self.config)
        self.status_service = StatusService(self.config, self.store, self.git_ops)
        self.sync_service = SyncService(self.config, self.store, self.git_ops)
        self.gc_service = GcService(self.config, self.store, self.git_ops)
        self.pin_service = PinService(self.config, self.store, self.git_ops)
        self.maintenance = StoreMaintenance(self.config, self.store, self.git_ops)
        self.member_service = MemberService(self.config, self.sync_service)
        self.exec_service = ExecService(self.config)

        logger.debug(f"Using store at {self.store.root}")

    @staticmethod
    def resolve_root(root: Optional[Union[str, Path]] = None) -> Path:
        """Workspace root for root (or the current directory).

        Raises:
            ConfigError: when no megarepo.json is found
        """
        found = find_workspace_root(root)
        if found is None:
            where = root or Path.cwd()
            raise ConfigError(f"No megarepo.json found in {where} or any parent directory")
        return found

    def status(self, root: Optional[Union[str, Path]] = None) -> WorkspaceStatus:
        return self.status_service.get_status(self.resolve_root(root))

    def sync(self, root: Optional[Union[str, Path]] = None, options: Optional[SyncOptions] = None,
             ) -> MegarepoSyncResult:
        options = options or SyncOptions.from_config(self.config)
        return self.sync_service.sync(self.resolve_root(root), options)

    def pin(self, name: str, commit: Optional[str] = None,
            root: Optional[Union[str, Path]] = None) -> MemberSyncResult:
        return self.pin_service.pin(self.resolve_root(root), name, commit)

    def unpin(self, name: str, root: Optional[Union[str, Path]] = None) -> MemberSyncResult:
        return self.pin_service.unpin(self.resolve_root(root), name)

    def add(self, source: str, name: Optional[str] = None, sync: bool = True,
            root: Optional[Union[str, Path]] = None) -> AddMemberResult:
        return self.member_service.add(self.resolve_root(root), source, name=name, sync=sync)

    def exec_command(self, command: str, member: Optional[str] = None, parallel: bool = True,
                     root: Optional[Union[str, Path]] = None) -> List[ExecResult]:
        return self.exec_service.run(self.resolve_root(root), command, member=member, parallel=parallel)

    def load_lock_files(self, paths: List[Union[str, Path]]) -> List[LockFile]:
        """Lock files from a mix of workspace roots and lock file paths.

        A workspace root also contributes the locks of the nested megarepos
        linked below it.

        Raises:
            LockFileMissingError: a given path holds no lock file
        """
        locks = []
        for raw in paths:
            path = Path(raw).expanduser()
            service = LockService(path) if path.is_dir() else LockService(path.parent, path)
            lock = service.read()
            if lock is None:
                raise LockFileMissingError(str(service.path))
            locks.append(lock)
            if is_megarepo(service.root):
                locks.extend(nested_lock_files(service.root))
        return locks

    def gc(self, lock_paths: Optional[List[Union[str, Path]]] = None, force: bool = False,
           dry_run: bool = False, prune_bare: bool = False, remove_all: bool = False,
           root: Optional[Union[str, Path]] = None) -> GcResult:
        """Garbage-collect the store.

        Without lock_paths, the locks of the workspace at root (default: the
        current one) and of its nested megarepos are used.
        """
        if remove_all:
            return self.gc_service.collect([], force=force, dry_run=dry_run, prune_bare=prune_bare,
                                           remove_all=True)
        if lock_paths:
            lock_files = self.load_lock_files(lock_paths)
            workspaces = len(lock_paths)
        else:
            workspace = self.resolve_root(root) if root is not None else find_workspace_root()
            lock_files = workspace_lock_files(workspace) if workspace else []
            workspaces = 1 if lock_files else 0
        return self.gc_service.collect(lock_files, force=force, dry_run=dry_run, prune_bare=prune_bare,
                                       workspaces=workspaces)

    def store_add(self, source: str, dry_run: bool = False) -> StoreRepoResult:
        return self.maintenance.add(source, dry_run=dry_run)

    def store_fetch(self, dry_run: bool = False) -> List[StoreRepoResult]:
        return self.maintenance.fetch(dry_run=dry_run)

    def store_status(self) -> List[StoreWorktreeStatus]:
        return self.maintenance.status()

    def store_ls(self) -> List[str]:
        return self.maintenance.list_repos()
