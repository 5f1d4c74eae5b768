"""Cooperative yield points for long grid loops.

Heavy loops are generators that ``yield`` at their suspension points and
``return`` their result. The same generator can be drained synchronously in a
worker or stepped on the event loop so other tasks run in between.
"""

from __future__ import annotations

import asyncio
from typing import Generator, TypeVar

T = TypeVar("T")

Steps = Generator[None, None, T]

ASSIGN_ROWS_PER_YIELD = 32
FILTER_ROWS_PER_YIELD = 16
LOOPS_PER_YIELD = 16


def run_to_completion(steps: Steps[T]) -> T:
    """Drain `steps` without suspending and return its result."""

    while True:
        try:
            next(steps)
        except StopIteration as stop:
            return stop.value


async def run_cooperatively(steps: Steps[T]) -> T:
    """Drive `steps`, handing control back to the event loop at every yield."""

    while True:
        try:
            next(steps)
        except StopIteration as stop:
            return stop.value
        await asyncio.sleep(0)


def row_blocks(height: int, rows_per_block: int) -> Generator[tuple[int, int], None, None]:
    step = max(1, int(rows_per_block))
    for y0 in range(0, height, step):
        yield y0, min(height, y0 + step)
