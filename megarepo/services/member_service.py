"""Adding members to a workspace."""

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from megarepo.models.results import AddMemberResult
from megarepo.models.source import LocalSource
from megarepo.services.config_loader import add_member
from megarepo.services.source_resolver import parse_source_string
from megarepo.services.sync_service import SyncOptions, SyncService
from megarepo.utils.logging import get_logger

if TYPE_CHECKING:
    from megarepo.config import Config

logger = get_logger(__name__)


def suggest_member_name(source: str, root: Optional[Union[str, Path]] = None) -> str:
    """Default member name for a source: the repository name, or the directory name.

    Raises:
        InvalidSourceError: when source matches no known form
    """
    parsed = parse_source_string(source, workspace_root=root)
    if isinstance(parsed, LocalSource):
        return Path(parsed.path).name
    return parsed.repo_key.repo


class MemberService:
    """Edits the member list of megarepo.json."""

    def __init__(self, config: "Config", sync_service: Optional[SyncService] = None):
        self.config = config
        self.sync_service = sync_service or SyncService(config)

    def add(self, root: Union[str, Path], source: str, name: Optional[str] = None,
            sync: bool = True) -> AddMemberResult:
        """Declare a new member and, with sync, materialise it right away.

        The new member is synced with a fetch so that an existing bare
        repository picks up refs it has not seen yet.

        Raises:
            InvalidSourceError: source matches no known form
            ConfigError: the name is unusable or already taken
        """
        root = Path(root).resolve()
        source = source.strip()
        suggested = suggest_member_name(source, root)
        name = name or suggested
        add_member(root, name, source)

        if not sync:
            return AddMemberResult(name=name, source=source)

        logger.info(f"Syncing new member {name}")
        options = SyncOptions(pull=True, only=[name])
        result = self.sync_service.sync(root, options)
        return AddMemberResult(name=name, source=source, sync_result=result)
