"""Element-wise vector operations used by the election's vote aggregation."""

from __future__ import annotations

from collections.abc import Callable, Sequence


def add_vecs(first: Sequence[int], second: Sequence[int]) -> list[int]:
    """Element-wise sum of two vectors of equal length."""
    return [a + b for a, b in zip(first, second, strict=True)]


def mul_vec(src: Sequence[int], num: int) -> list[int]:
    """Every element multiplied by ``num``."""
    return [x * num for x in src]


def normalize_vec(src: Sequence[int]) -> list[int]:
    """Map non-negative values to 1 and negative values to -1."""
    return [1 if x >= 0 else -1 for x in src]


def bool_mask(src: Sequence[int], predicate: Callable[[int], bool]) -> list[bool]:
    """The predicate applied to every element."""
    return [predicate(x) for x in src]