"""Worker pool helpers for per-member parallelism."""

import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Optional, Tuple, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def is_free_threading_enabled() -> bool:
    """Detect if Python is running with free-threading enabled.

    Returns:
        True if running on Python 3.13+ with GIL disabled (free-threading mode)
    """
    return hasattr(sys, "_is_gil_enabled") and not sys._is_gil_enabled()


def get_optimal_worker_count(user_specified: Optional[int] = None) -> int:
    """Calculate optimal worker count based on threading mode and CPU count.

    Args:
        user_specified: User-specified worker count, if provided

    Returns:
        Optimal number of workers for parallel processing
    """
    if user_specified is not None and user_specified > 0:
        return user_specified

    cpu_count = os.cpu_count() or 1

    if is_free_threading_enabled():
        return min(64, cpu_count * 2)

    # Work is dominated by git subprocesses, so oversubscribe a little
    return min(32, cpu_count + 4)


def run_parallel(
    func: Callable[[T], R],
    items: Iterable[Tuple[str, T]],
    workers: Optional[int] = None,
    sequential: bool = False,
) -> Dict[str, R]:
    """Run func over keyed items, returning results by key.

    Exceptions propagate from the first failing item. Callers that need
    per-item error capture must catch inside func.
    """
    items = list(items)
    results: Dict[str, R] = {}

    if sequential or len(items) <= 1:
        for key, item in items:
            results[key] = func(item)
        return results

    max_workers = min(get_optimal_worker_count(workers), len(items))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_key = {executor.submit(func, item): key for key, item in items}
        for future in as_completed(future_to_key):
            results[future_to_key[future]] = future.result()
    return results
