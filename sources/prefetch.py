"""Batching with read-ahead of the next source batch."""

import itertools
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Iterator, List

logger = logging.getLogger('forum_import.sources.prefetch')


def prefetch_batches(iterable: Iterable[Any], batch_size: int, read_ahead: int = 1) -> Iterator[List[Any]]:
    """
    Chunk an iterable into lists of batch_size items.

    While the caller processes one batch, the next `read_ahead` batches are
    read by a single worker thread. Errors raised by the source surface in
    the caller when the failing batch is reached.

    Args:
        iterable: Source rows
        batch_size: Items per batch (at least 1)
        read_ahead: Number of batches fetched ahead (0 disables the worker)
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    iterator = iter(iterable)

    def next_batch() -> List[Any]:
        return list(itertools.islice(iterator, batch_size))

    if read_ahead <= 0:
        while True:
            batch = next_batch()
            if not batch:
                return
            yield batch

    # One worker: batches are read strictly in order
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix='source-prefetch') as executor:
        pending = deque(executor.submit(next_batch) for _ in range(read_ahead))
        while pending:
            batch = pending.popleft().result()
            if not batch:
                break
            pending.append(executor.submit(next_batch))
            yield batch

        for future in pending:
            future.cancel()


__all__ = ['prefetch_batches']
