"""Helpers for splitting id lists into per-call batches."""

from __future__ import annotations

from typing import List, Sequence, TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive batches of at most ``size`` elements.

    Order is preserved and every item lands in exactly one batch, so a list of
    N items yields ceil(N / size) batches and only the last may be short.
    """
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def batch_count(n_items: int, size: int) -> int:
    """Number of calls needed to cover ``n_items`` ids at ``size`` per call."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return -(-n_items // size)
