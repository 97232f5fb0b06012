"""Bounded thread fan-out for registry I/O."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterator, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def map_bounded(func: Callable[[T], R], items: Sequence[T], max_workers: int) -> Iterator[Tuple[T, R]]:
    """Run ``func`` over ``items`` on at most ``max_workers`` threads.

    Pairs are yielded on the calling thread in completion order, so callers
    can merge results without locking. The first failure cancels calls that
    have not started and re-raises; calls already running finish in the
    background and their results are discarded.
    """
    if not items:
        return
    if max_workers <= 1 or len(items) == 1:
        for item in items:
            yield item, func(item)
        return

    executor = ThreadPoolExecutor(max_workers=min(max_workers, len(items)), thread_name_prefix="rockflow")
    future_to_item = {executor.submit(func, item): item for item in items}
    try:
        for future in as_completed(future_to_item):
            yield future_to_item[future], future.result()
    except BaseException:
        pending = sum(1 for future in future_to_item if not future.done())
        logger.debug("Cancelling %d pending registry calls", pending)
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
