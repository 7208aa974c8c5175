"""Bounded-concurrency fan-out for independent async work items.

Usage:
    pool = WorkerPool(max_concurrent=4)
    results = await pool.process(
        [(batch_id, partial(evaluate, batch)) for batch_id, batch in batches],
        on_progress=lambda done, total: ...,
    )
    failed = [r for r in results if not r.ok]
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from keygraph.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class WorkResult(Generic[T]):
    """Outcome of one work item: a value or the exception it raised."""

    item_id: str
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkerPool:
    """Run async work items with at most ``max_concurrent`` in flight.

    Every item runs to completion; an exception fails only its own item and is
    returned in its WorkResult. Cancellation of the caller cancels every
    in-flight item.
    """

    def __init__(self, max_concurrent: int = 4):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent

    async def process(
        self,
        items: Sequence[tuple[str, Callable[[], Awaitable[T]]]],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[WorkResult[T]]:
        """Run all items and return their results in submission order.

        Args:
            items: (item_id, zero-argument coroutine function) pairs
            on_progress: Called with (completed, total) after each item finishes

        Returns:
            One WorkResult per item, in the order submitted
        """
        if not items:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent)
        total = len(items)
        completed = 0

        async def run(item_id: str, fn: Callable[[], Awaitable[T]]) -> WorkResult[T]:
            nonlocal completed
            async with semaphore:
                try:
                    result = WorkResult(item_id=item_id, value=await fn())
                except Exception as e:
                    logger.warning("work_item_failed", item_id=item_id, error=str(e))
                    result = WorkResult(item_id=item_id, error=e)
            completed += 1
            if on_progress:
                on_progress(completed, total)
            return result

        return list(await asyncio.gather(*(run(item_id, fn) for item_id, fn in items)))
