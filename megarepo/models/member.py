"""Declared member models"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from megarepo.exceptions import ConfigError


def validate_member_name(name: str) -> Optional[str]:
    """Return an error message for an unusable member name, or None if it is fine.

    Member names become directory names under repos/, so they must be a
    single, visible path segment.
    """
    if not name or not name.strip():
        return "Member name cannot be empty"
    if "/" in name or "\\" in name:
        return "Member name cannot contain path separators"
    if name.startswith("."):
        return "Member name cannot start with a dot"
    return None


@dataclass
class Member:
    """A declared workspace member."""
    name: str
    source: str


@dataclass
class MegarepoConfig:
    """Contents of megarepo.json."""
    members: Dict[str, str] = field(default_factory=dict)

    def member_list(self) -> List[Member]:
        return [Member(name=name, source=source) for name, source in self.members.items()]

    def to_dict(self) -> dict:
        return {"members": dict(self.members)}

    @classmethod
    def from_dict(cls, data: dict) -> "MegarepoConfig":
        if not isinstance(data, dict):
            raise ConfigError("megarepo.json must contain a JSON object")
        members = data.get("members", {})
        if not isinstance(members, dict):
            raise ConfigError("'members' must be an object mapping names to sources")
        for name, source in members.items():
            error = validate_member_name(name)
            if error:
                raise ConfigError(f"{error}: '{name}'")
            if not isinstance(source, str) or not source.strip():
                raise ConfigError(f"Member '{name}' must have a non-empty source string")
        return cls(members={name: source.strip() for name, source in members.items()})
