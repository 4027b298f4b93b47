"""Concurrent utilities - functional primitives for parallel execution."""

import contextvars
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor


def map_async[I, O](
    fn: Callable[[I], O],
    items: Iterable[I],
    concurrency: int | None = None,
) -> Iterator[O]:
    """Apply function to items concurrently, preserving order.

    Automatically propagates contextvars to worker threads. The executor is
    shut down (all tasks finished) before the iterator is exhausted.

    Args:
        fn: Function to apply to each item.
        items: Items to process.
        concurrency: Max concurrent workers. None = len(items).

    Yields:
        Results in same order as input items.

    Example:
        >>> list(map_async(probe_node, nodes, concurrency=8))
        [info1, info2, ...]
    """
    items_list = list(items)
    if not items_list:
        return

    # Create a fresh context copy for EACH task (ctx.run cannot be concurrent on same object)
    workers = min(concurrency, len(items_list)) if concurrency else len(items_list)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, fn, item)
            for item in items_list
        ]
        for future in futures:
            yield future.result()
