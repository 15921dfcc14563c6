"""Loading megarepo.json and locating workspace roots."""

import json
import os
from pathlib import Path
from typing import Dict, Optional, Union

from megarepo.constants import CONFIG_FILE_NAME, ENV_ROOT
from megarepo.exceptions import ConfigError, InvalidSourceError, PermissionDeniedError
from megarepo.models.member import MegarepoConfig, validate_member_name
from megarepo.models.source import SourceSpec
from megarepo.services.source_resolver import parse_source_string
from megarepo.utils.logging import get_logger

logger = get_logger(__name__)


def config_path(root: Union[str, Path]) -> Path:
    return Path(root) / CONFIG_FILE_NAME


def is_megarepo(path: Union[str, Path]) -> bool:
    """True when path holds a megarepo.json."""
    return config_path(path).is_file()


def load_config(root: Union[str, Path]) -> MegarepoConfig:
    """Read and validate megarepo.json under root.

    Raises:
        ConfigError: if the file is missing, unreadable or malformed
    """
    path = config_path(root)
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"No {CONFIG_FILE_NAME} found in {root}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    config = MegarepoConfig.from_dict(data)
    logger.debug(f"Loaded {len(config.members)} members from {path}")
    return config


def add_member(root: Union[str, Path], name: str, source: str) -> MegarepoConfig:
    """Append a member to megarepo.json, keeping every other key in the file.

    Raises:
        ConfigError: if the name is unusable or already taken, or the file is malformed
    """
    path = config_path(root)
    config = load_config(root)
    error = validate_member_name(name)
    if error:
        raise ConfigError(f"{error}: '{name}'")
    if name in config.members:
        raise ConfigError(f"Member '{name}' already exists in {CONFIG_FILE_NAME}")

    with open(path, "r") as f:
        data = json.load(f)
    data.setdefault("members", {})[name] = source

    # Atomic write: write to temp file, then rename
    temp_file = path.with_suffix(".json.tmp")
    try:
        with open(temp_file, "w") as f:
            f.write(json.dumps(data, indent=2) + "\n")
        temp_file.replace(path)
    except PermissionError as e:
        raise PermissionDeniedError(str(path), str(e)) from e
    finally:
        if temp_file.exists():
            temp_file.unlink()

    logger.info(f"Added member {name} ({source}) to {path}")
    config.members[name] = source
    return config


def resolve_sources(root: Union[str, Path], config: MegarepoConfig) -> Dict[str, SourceSpec]:
    """Parse every member's source string.

    Raises:
        ConfigError: naming the member whose source is invalid
    """
    sources = {}
    for name, source in config.members.items():
        try:
            sources[name] = parse_source_string(source, workspace_root=root)
        except InvalidSourceError as e:
            raise ConfigError(f"Member '{name}': {e}") from e
    return sources


def find_workspace_root(start: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Locate the workspace root.

    $MEGAREPO_ROOT wins when set. Otherwise walk up from start (default: cwd)
    and return the outermost directory that holds a megarepo.json, so that
    running inside a nested member still targets the enclosing workspace.
    """
    env_root = os.environ.get(ENV_ROOT)
    if env_root and start is None:
        root = Path(env_root).expanduser()
        if is_megarepo(root):
            return root.resolve()
        logger.warning(f"{ENV_ROOT}={env_root} does not contain {CONFIG_FILE_NAME}")

    current = Path(start or Path.cwd()).resolve()
    found: Optional[Path] = None
    for candidate in [current, *current.parents]:
        if is_megarepo(candidate):
            found = candidate
    return found
