"""Pagination helpers."""

from typing import Sequence, TypeVar

T = TypeVar("T")


def paginate(limit: int, offset: int, max_limit: int = 200) -> tuple[int, int]:
    """Clamp limit/offset; return (limit, offset)."""
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset


def slice_page(items: Sequence[T], limit: int, offset: int) -> tuple[list[T], int]:
    """Apply clamped limit/offset to an in-memory sequence; return (page, total)."""
    limit, offset = paginate(limit, offset)
    return list(items[offset:offset + limit]), len(items)
