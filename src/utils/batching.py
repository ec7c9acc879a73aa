"""Chunking helper used by CSV streaming and batch fetches."""

from typing import Iterable, Iterator, List, TypeVar

T = TypeVar("T")


def batch(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive lists of `size` items; the last one may be shorter.

    Only one chunk is buffered at a time, so `items` may be a lazy iterator.
    """
    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")

    chunk: List[T] = []
    for item in items:
        chunk.append(item)
        if len(chunk) == size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
