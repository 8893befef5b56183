"""Bounded-concurrency helpers for asyncio work."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def bounded_gather(
    func: Callable[[T], Awaitable[R]],
    items: Iterable[T],
    limit: int,
) -> List[R]:
    """Run ``func`` over ``items`` with at most ``limit`` calls in flight.

    Results are returned in input order. The first failure cancels every
    task still pending and is re-raised unchanged.

    Args:
        func: Coroutine function applied to each item.
        items: Inputs; consumed once.
        limit: Maximum number of concurrent calls (at least 1).

    Returns:
        List of results, one per item.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)

    async def _run(item: T) -> R:
        async with semaphore:
            return await func(item)

    tasks = [asyncio.ensure_future(_run(item)) for item in items]
    if not tasks:
        return []
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
