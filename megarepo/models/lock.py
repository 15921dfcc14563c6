"""Lock file models"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from megarepo.constants import LOCK_FILE_VERSION
from megarepo.exceptions import ConfigError


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class LockEntry:
    """Resolved state of one remote member."""
    url: str
    ref: str
    commit: str
    pinned: bool = False
    locked_at: Optional[str] = None

    def matches(self, other: "LockEntry") -> bool:
        """True when both entries pin the same url, ref, commit and pin state."""
        return (
            self.url == other.url
            and self.ref == other.ref
            and self.commit == other.commit
            and self.pinned == other.pinned
        )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "ref": self.ref,
            "commit": self.commit,
            "pinned": self.pinned,
            "lockedAt": self.locked_at or utc_timestamp(),
        }

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "LockEntry":
        if not isinstance(data, dict):
            raise ConfigError(f"Lock entry for '{name}' must be an object")
        for key in ("url", "ref", "commit"):
            if not isinstance(data.get(key), str) or not data.get(key):
                raise ConfigError(f"Lock entry for '{name}' is missing '{key}'")
        pinned = data.get("pinned", False)
        if not isinstance(pinned, bool):
            raise ConfigError(f"Lock entry for '{name}' has non-boolean 'pinned'")
        return cls(
            url=data["url"],
            ref=data["ref"],
            commit=data["commit"],
            pinned=pinned,
            locked_at=data.get("lockedAt"),
        )


@dataclass
class LockFile:
    """Contents of megarepo.lock."""
    version: int = LOCK_FILE_VERSION
    members: Dict[str, LockEntry] = field(default_factory=dict)

    def get(self, name: str) -> Optional[LockEntry]:
        return self.members.get(name)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "members": {name: entry.to_dict() for name, entry in self.members.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LockFile":
        if not isinstance(data, dict):
            raise ConfigError("Lock file must contain a JSON object")
        version = data.get("version")
        if version != LOCK_FILE_VERSION:
            raise ConfigError(f"Unsupported lock file version: {version!r}")
        members = data.get("members", {})
        if not isinstance(members, dict):
            raise ConfigError("Lock file 'members' must be an object")
        return cls(
            version=version,
            members={name: LockEntry.from_dict(name, entry) for name, entry in members.items()},
        )
