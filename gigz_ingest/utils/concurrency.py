"""Bounded fan-out for chunk writes.

:func:`throttled_gather` starts every chunk at once but lets at most
``limit`` of them past the gate; the rest wait their turn.  Permits are
held by ``async with`` so a chunk that raises or is cancelled hands its
slot to the next one.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Iterable, TypeVar

_T = TypeVar("_T")


async def throttled_gather(work: Iterable[Awaitable[_T]], limit: int) -> list[_T]:
    """Await *work* with at most *limit* items in flight.

    Results keep input order.  The first exception propagates, as with
    plain ``asyncio.gather``.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    gate = asyncio.Semaphore(limit)

    async def _gated(item: Awaitable[_T]) -> _T:
        async with gate:
            return await item

    return list(await asyncio.gather(*(_gated(item) for item in work)))
