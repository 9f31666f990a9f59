"""
Fork-join helpers over a thread pool.

The heavy lifting happens inside numba kernels compiled with ``nogil=True``,
so plain threads give real parallelism while sharing the model and the
observation tables without copies.

Calls made from inside a worker run serially in that worker; a fit over
many sequences parallelises across sequences, not within them.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from genomehmm.config import default_n_jobs

T = TypeVar("T")
R = TypeVar("R")

_local = threading.local()


def _in_worker() -> bool:
    return getattr(_local, "in_worker", False)


def _as_worker(fn: Callable[..., R]) -> Callable[..., R]:
    def run(*args):
        _local.in_worker = True
        try:
            return fn(*args)
        finally:
            _local.in_worker = False
    return run


def _resolve_n_jobs(n_jobs: Optional[int], n_tasks: int) -> int:
    if n_jobs is None or n_jobs <= 0:
        n_jobs = default_n_jobs()
    return max(1, min(n_jobs, n_tasks))


def parallel_for(fn: Callable[[T], R], items: Iterable[T],
                 n_jobs: Optional[int] = None) -> List[R]:
    """
    Apply `fn` to every item, returning results in input order.

    The first exception raised by a task is re-raised in the caller after
    all tasks have finished.
    """
    items = list(items)
    n_workers = _resolve_n_jobs(n_jobs, len(items))
    if n_workers == 1 or _in_worker():
        return [fn(item) for item in items]

    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = [executor.submit(_as_worker(fn), item) for item in items]
    return [future.result() for future in futures]


def invoke_all(*thunks: Callable[[], R], n_jobs: Optional[int] = None) -> List[R]:
    """Run zero-argument callables concurrently and wait for all of them."""
    return parallel_for(lambda thunk: thunk(), thunks, n_jobs=n_jobs)


def chunked(lo: int, hi: int, n_chunks: Optional[int] = None) -> List[Tuple[int, int]]:
    """
    Split the half-open range [lo, hi) into at most `n_chunks` contiguous
    non-empty ranges of near-equal length.
    """
    if hi <= lo:
        return []
    if n_chunks is None or n_chunks <= 0:
        n_chunks = default_n_jobs()
    n_chunks = min(n_chunks, hi - lo)
    bounds = [lo + (hi - lo) * i // n_chunks for i in range(n_chunks + 1)]
    return [(bounds[i], bounds[i + 1]) for i in range(n_chunks)]


def parallel_reduce(map_fn: Callable[[int, int], R],
                    combine: Callable[[R, R], R],
                    chunks: Sequence[Tuple[int, int]],
                    initial: R,
                    n_jobs: Optional[int] = None) -> R:
    """
    Evaluate `map_fn(lo, hi)` for every chunk in parallel and fold the
    partial results with an associative `combine`, left to right.
    """
    partials = parallel_for(lambda chunk: map_fn(*chunk), chunks, n_jobs=n_jobs)
    acc = initial
    for partial in partials:
        acc = combine(acc, partial)
    return acc
