"""Runtime configuration for megarepo"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from megarepo.constants import (
    DEFAULT_NETWORK_RETRIES,
    DEFAULT_NETWORK_TIMEOUT,
    DEFAULT_STORE_DIR,
    ENV_STORE,
)


def default_store_path() -> str:
    """Store root from $MEGAREPO_STORE, falling back to ~/.megarepo."""
    env_value = os.environ.get(ENV_STORE)
    if env_value:
        return str(Path(env_value).expanduser())
    return str(Path.home() / DEFAULT_STORE_DIR)


@dataclass
class Config:
    """Configuration for megarepo with validation."""

    # Store
    store_path: Optional[str] = None  # None = $MEGAREPO_STORE or ~/.megarepo

    # Execution modes
    dry_run: bool = False
    force: bool = False
    frozen: bool = False
    pull: bool = False
    deep: bool = False
    verbose: bool = False
    debug: bool = False
    sequential: bool = False  # Force sequential processing (disable parallelism)
    workers: Optional[int] = None  # Number of parallel workers (None = auto-detect)

    # Network
    git_protocol: str = "auto"  # auto, ssh, https
    network_timeout: float = DEFAULT_NETWORK_TIMEOUT
    network_retries: int = DEFAULT_NETWORK_RETRIES

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_store_path()
        self._validate_workers()
        self._validate_git_protocol()
        self._validate_network()

    def _validate_store_path(self):
        """Resolve store_path to an absolute path."""
        if self.store_path is None or not str(self.store_path).strip():
            self.store_path = default_store_path()
        self.store_path = str(Path(str(self.store_path).strip()).expanduser().absolute())

    def _validate_workers(self):
        """Validate workers is positive when given."""
        if self.workers is not None and self.workers <= 0:
            raise ValueError(f"workers must be positive, got {self.workers}")

    def _validate_git_protocol(self):
        """Validate git_protocol is one of allowed values."""
        allowed = ["auto", "ssh", "https"]
        if self.git_protocol not in allowed:
            raise ValueError(f"git_protocol must be one of {allowed}, got '{self.git_protocol}'")

    def _validate_network(self):
        """Validate timeout and retry count."""
        if self.network_timeout <= 0:
            raise ValueError(f"network_timeout must be positive, got {self.network_timeout}")
        if self.network_retries < 0:
            raise ValueError(f"network_retries cannot be negative, got {self.network_retries}")

    def to_dict(self) -> dict:
        """Convert config to a plain dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def get(self, key: str, default=None):
        """Get config value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Create Config from dictionary, ignoring unknown keys."""
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in config_dict.items() if k in known_fields}
        return cls(**filtered)
