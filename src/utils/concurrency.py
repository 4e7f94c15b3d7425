"""Shared concurrency primitives.

1. **throttled_gather** -- a drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  The orchestrator
   uses it to run a batch with a bounded worker pool.  The embedder holds
   its own semaphore instead, because it polls for cancellation after
   acquiring a slot and before each provider call.

2. **KeyedLocks** -- lazily created ``asyncio.Lock`` per key.  The
   orchestrator uses one per source id to reserve a (source_id, version)
   before a job starts and to serialise per-source statistics updates.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    limit: int = 4,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``limit`` (or the semaphore's value) at once.

    Parameters
    ----------
    coros:
        Awaitable objects to execute.
    semaphore:
        Optional shared semaphore.  When omitted a fresh one of size
        ``max(1, limit)`` is created for this call.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


class KeyedLocks:
    """A registry of ``asyncio.Lock`` objects keyed by string.

    Locks are created on first use and never removed; the key space (source
    ids) is small and bounded by the corpus.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
