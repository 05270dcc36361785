"""Bounded fan-out helpers for async work."""

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
    """Map ``func`` over ``items`` with at most ``limit`` calls in flight.

    Results keep the order of ``items``. Exceptions raised by ``func`` propagate;
    callers that need per-item isolation should catch inside ``func``.
    """
    semaphore = asyncio.Semaphore(max(limit, 1))

    async def _run(item: T) -> R:
        async with semaphore:
            return await func(item)

    return list(await asyncio.gather(*(_run(item) for item in items)))
