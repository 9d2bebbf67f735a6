"""Parallel upload utilities."""
from typing import List, Sequence, TypeVar

T = TypeVar("T")

LARGE_BATCH_THRESHOLD = 300
SMALL_BATCH_THRESHOLD = 50


def get_parallel_count(
    total_files: int,
    requested: int,
    max_parallel: int = 8,
    min_parallel: int = 3,
) -> int:
    """
    Get effective upload concurrency for a batch.

    The requested value is a hint:
    - Large batches (>= 300 files): requested + 2, capped at max_parallel
    - Small batches (< 50 files): requested - 2, floored at min_parallel
    - Otherwise: requested

    Every branch is capped at max_parallel, so a small batch never runs
    wider than a larger one.
    """
    requested = max(1, requested)

    if total_files >= LARGE_BATCH_THRESHOLD:
        count = requested + 2
    elif total_files < SMALL_BATCH_THRESHOLD:
        count = max(requested - 2, min_parallel)
    else:
        count = requested
    return max(1, min(count, max_parallel))


def split_chunks(items: Sequence[T], chunk_size: int) -> List[Sequence[T]]:
    """Partition items into contiguous chunks of at most chunk_size."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    return [items[start:start + chunk_size] for start in range(0, len(items), chunk_size)]
