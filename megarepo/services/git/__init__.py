"""Git-related services for megarepo."""

from .operations import GitOperations, interpret_git_error

__all__ = [
    "GitOperations",
    "interpret_git_error",
]
