"""Utility functions for megarepo.

This package provides utility modules:
- logging: Logging configuration and logger creation
- threading: Worker pool sizing and parallel execution
- retry: Bounded retry for network operations
"""

from .logging import setup_logging, get_logger, ColoredFormatter
from .threading import (
    is_free_threading_enabled,
    get_optimal_worker_count,
    run_parallel,
)
from .retry import call_with_retry

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "ColoredFormatter",
    # Threading
    "is_free_threading_enabled",
    "get_optimal_worker_count",
    "run_parallel",
    # Retry
    "call_with_retry",
]
