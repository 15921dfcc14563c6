"""Lock file persistence and reconciliation helpers."""
import json
from pathlib import Path
from typing import Iterable, List, Optional, Union

from megarepo.constants import LOCK_FILE_NAME
from megarepo.exceptions import ConfigError, PermissionDeniedError
from megarepo.models.lock import LockEntry, LockFile, utc_timestamp
from megarepo.models.status import LockStaleness
from megarepo.utils.logging import get_logger

logger = get_logger(__name__)


class LockService:
    """Reads and writes megarepo.lock for one workspace root."""

    def __init__(self, root: Union[str, Path], path: Optional[Union[str, Path]] = None):
        self.root = Path(root)
        self.path = Path(path) if path else self.root / LOCK_FILE_NAME

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> Optional[LockFile]:
        """Load the lock file, or None when it does not exist.

        Raises:
            ConfigError: if the lock file is malformed
        """
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {self.path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {self.path}: {e}") from e
        return LockFile.from_dict(data)

    @staticmethod
    def serialize(lock: LockFile) -> str:
        data = lock.to_dict()
        data["members"] = dict(sorted(data["members"].items()))
        return json.dumps(data, indent=2) + "\n"

    def write(self, lock: LockFile) -> bool:
        """Atomically write the lock file. Returns False when the content is unchanged."""
        content = self.serialize(lock)
        try:
            if self.path.read_text() == content:
                logger.debug(f"{self.path} unchanged")
                return False
        except FileNotFoundError:
            pass

        # Atomic write: write to temp file, then rename
        temp_file = self.path.with_suffix(".lock.tmp")
        try:
            with open(temp_file, "w") as f:
                f.write(content)
                f.flush()
            temp_file.replace(self.path)
        except PermissionError as e:
            raise PermissionDeniedError(str(self.path), str(e)) from e
        finally:
            if temp_file.exists():
                temp_file.unlink()

        logger.info(f"Wrote {self.path} ({len(lock.members)} members)")
        return True


def check_staleness(lock: Optional[LockFile], remote_names: Iterable[str]) -> LockStaleness:
    """Compare configured remote members against lock entries.

    With no lock file every remote member counts as missing from it.
    """
    names = list(remote_names)
    if lock is None:
        return LockStaleness(exists=False, missing_from_lock=sorted(names), extra_in_lock=[])
    locked = set(lock.members)
    configured = set(names)
    return LockStaleness(
        exists=True,
        missing_from_lock=sorted(configured - locked),
        extra_in_lock=sorted(locked - configured),
    )


def sync_with_config(lock: LockFile, remote_names: Iterable[str]) -> List[str]:
    """Drop lock entries for members that are no longer configured as remote. Returns removed names."""
    keep = set(remote_names)
    removed = sorted(name for name in lock.members if name not in keep)
    for name in removed:
        del lock.members[name]
    if removed:
        logger.debug(f"Dropped lock entries: {', '.join(removed)}")
    return removed


def upsert_entry(lock: LockFile, name: str, url: str, ref: str, commit: str,
                 pinned: Optional[bool] = None) -> bool:
    """Insert or update a lock entry. Returns True if anything changed.

    pinned=None keeps the existing pin state. lockedAt only moves when the
    entry itself changes.
    """
    existing = lock.members.get(name)
    new_pinned = pinned if pinned is not None else (existing.pinned if existing else False)
    candidate = LockEntry(url=url, ref=ref, commit=commit, pinned=new_pinned)

    if existing is not None and existing.matches(candidate):
        return False

    candidate.locked_at = utc_timestamp()
    lock.members[name] = candidate
    return True
