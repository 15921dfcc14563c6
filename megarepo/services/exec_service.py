"""Running shell commands across member directories."""

import os
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Union

from megarepo.constants import MEMBERS_DIR
from megarepo.exceptions import ConfigError
from megarepo.models.results import ExecResult
from megarepo.services.config_loader import load_config
from megarepo.utils.logging import get_logger
from megarepo.utils.threading import run_parallel

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)

NOT_SYNCED_EXIT_CODE = -1


class ExecService:
    """Runs one shell command in every (or one) member directory."""

    def __init__(self, config: "Config"):
        self.config = config

    def run(self, root: Union[str, Path], command: str, member: Optional[str] = None,
            parallel: bool = True) -> List[ExecResult]:
        """Run command with `sh -c` inside repos/<member> for each member.

        Results come back in megarepo.json order. Members that are not synced
        get exit code -1 and are not run.

        Raises:
            ConfigError: member is given but not declared
        """
        root = Path(root).resolve()
        names = list(load_config(root).members)
        if member is not None:
            if member not in names:
                raise ConfigError(f"Member '{member}' not found in megarepo.json")
            names = [member]

        outcomes = run_parallel(
            lambda name: self._run_in_member(root, name, command),
            [(name, name) for name in names],
            workers=self.config.workers,
            sequential=self.config.sequential or not parallel,
        )
        return [outcomes[name] for name in names]

    def _run_in_member(self, root: Path, name: str, command: str) -> ExecResult:
        path = root / MEMBERS_DIR / name
        if not os.path.isdir(path):
            logger.debug(f"Skipping {name}: not synced")
            return ExecResult(name=name, exit_code=NOT_SYNCED_EXIT_CODE, stderr="Member not synced")

        logger.debug(f"Running '{command}' in {path}")
        try:
            completed = subprocess.run(
                ["sh", "-c", command],
                cwd=path,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            logger.error(f"{name}: {e}")
            return ExecResult(name=name, exit_code=1, stderr=str(e))

        if completed.returncode != 0:
            logger.info(f"{name}: exited with {completed.returncode}")
        return ExecResult(
            name=name,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
