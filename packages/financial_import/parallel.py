"""Order-preserving bounded concurrency over ``ThreadPoolExecutor``.

``bounded_map`` keeps at most ``concurrency`` calls in flight, submits new
work as earlier calls finish, and returns results in input order. The first
mapper exception cancels work that has not started and propagates.

The input iterable is consumed lazily so large files are not fanned out into
thousands of pending futures at once.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")

_ENV_CONCURRENCY = "FI_PREPARE_CONCURRENCY"


def default_concurrency() -> int:
    """``FI_PREPARE_CONCURRENCY`` if set to a positive integer, else 1."""

    raw = os.getenv(_ENV_CONCURRENCY, "").strip()
    if raw.isdigit() and int(raw) > 0:
        return int(raw)
    return 1


def bounded_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` in flight."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    if concurrency == 1:
        return [mapper(item) for item in iterable]

    it = enumerate(iterable)
    results: dict[int, OutT] = {}
    pending: dict[Future[OutT], int] = {}

    def _submit(pool: ThreadPoolExecutor) -> bool:
        try:
            idx, item = next(it)
        except StopIteration:
            return False
        pending[pool.submit(mapper, item)] = idx
        return True

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for _ in range(concurrency):
            if not _submit(pool):
                break

        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception:
                    pool.shutdown(wait=False, cancel_futures=True)
                    raise
            for _ in range(len(done)):
                if not _submit(pool):
                    break

    return [results[i] for i in range(len(results))]


__all__ = ["bounded_map", "default_concurrency"]
