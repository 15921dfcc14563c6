"""Shared constants for megarepo."""

from dataclasses import dataclass
from typing import List


# Workspace files
CONFIG_FILE_NAME = "megarepo.json"
LOCK_FILE_NAME = "megarepo.lock"
MEMBERS_DIR = "repos"
LOCK_FILE_VERSION = 1

# Store layout
DEFAULT_STORE_DIR = ".megarepo"
BARE_DIR = ".bare"
REFS_DIR = "refs"
STORE_LOCK_NAME = ".megarepo-store.lock"
LOCAL_HOST = "local"  # host segment used for file:// remotes

# Environment overrides
ENV_STORE = "MEGAREPO_STORE"
ENV_ROOT = "MEGAREPO_ROOT"

# Git
REMOTE_NAME = "origin"
DEFAULT_FETCH_REFSPEC = "+refs/heads/*:refs/remotes/origin/*"
SHORT_SHA_LENGTH = 7

# Network defaults
DEFAULT_NETWORK_TIMEOUT = 300  # seconds
DEFAULT_NETWORK_RETRIES = 2


@dataclass
class ColumnDefinition:
    """Definition of a table column."""

    key: str
    label: str
    width: int = 0  # 0 means auto-width


STATUS_COLUMNS: List[ColumnDefinition] = [
    ColumnDefinition("member", "Member", 28),
    ColumnDefinition("source", "Source", 36),
    ColumnDefinition("ref", "Ref", 16),
    ColumnDefinition("commit", "Commit", 9),
    ColumnDefinition("state", "State", 14),
    ColumnDefinition("notes", "Notes", 40),
]

SYNC_COLUMNS: List[ColumnDefinition] = [
    ColumnDefinition("member", "Member", 28),
    ColumnDefinition("status", "Status", 16),
    ColumnDefinition("commit", "Commit", 20),
    ColumnDefinition("message", "Message", 50),
]

GC_COLUMNS: List[ColumnDefinition] = [
    ColumnDefinition("repo", "Repository", 36),
    ColumnDefinition("ref", "Ref", 24),
    ColumnDefinition("status", "Status", 16),
    ColumnDefinition("message", "Message", 40),
]


# Symbol constants
SYMBOL_OK = "✓"
SYMBOL_MISSING = "✗"
SYMBOL_PINNED = "📌"
SYMBOL_NESTED = "↳"


# CLI colors (Rich color names)
STATUS_COLORS = {
    "cloned": "green",
    "synced": "green",
    "updated": "cyan",
    "locked": "cyan",
    "already_synced": "dim",
    "removed": "yellow",
    "skipped": "yellow",
    "error": "red",
    "skipped_dirty": "yellow",
    "skipped_in_use": "dim",
    "would_remove": "magenta",
}
