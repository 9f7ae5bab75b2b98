"""
Closed real intervals and the interval algebra used by the selection engine.

This module provides:
    - Range: a closed interval [min, max] ordered lexicographically
    - RangeLimit: start/end event used by the sweep-line intersection
    - RangeFactory implementations bounding allocations in hot loops
    - collection helpers: union, restriction, matching and the
      sweep-line multi-range intersection

NaN bounds mean "unbounded on that side" for containment and overlap
tests. UNDEFINED_RANGE (min=+inf, max=-inf) is the absent-summary
sentinel and is never finite.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Collection, Iterable, Sequence
from functools import total_ordering
from typing import NamedTuple

import numpy as np


logger = logging.getLogger(__name__)


@total_ordering
class Range:
    """
    Closed interval [min, max].

    Ranges compare lexicographically on (min, max) and hash on their
    bounds. They are treated as immutable values by the algebra; set()
    only exists for pooled reuse through a RangeFactory.
    """

    __slots__ = ("min", "max")

    def __init__(self, min: float = 0.0, max: float = 0.0) -> None:
        self.min = float(min)
        self.max = float(max)

    def set(self, min: float, max: float) -> None:
        """Reset both bounds (pooled instances only)."""
        self.min = float(min)
        self.max = float(max)

    def is_finite(self) -> bool:
        """True if both bounds are finite and min <= max."""
        return math.isfinite(self.min) and math.isfinite(self.max) and self.min <= self.max

    @property
    def center(self) -> float:
        return 0.5 * (self.min + self.max)

    @property
    def length(self) -> float:
        return self.max - self.min

    def contains(self, value: float, err: float | None = None) -> bool:
        """
        Test whether value lies inside this range.

        Args:
            value: Value to test.
            err: Optional tolerance widening both bounds.

        Returns:
            True if min <= value <= max (NaN bounds are unbounded).
        """
        if err is not None:
            return (self.min - err) <= value <= (self.max + err)
        return (math.isnan(self.min) or value >= self.min) and (
            math.isnan(self.max) or value <= self.max
        )

    def overlap(self, other: Range) -> bool:
        """True if this range and other share at least one point."""
        return (math.isnan(self.min) or self.min <= other.max) and (
            math.isnan(self.max) or self.max >= other.min
        )

    def overlap_fully(self, other: Range) -> bool:
        """True if this range contains other entirely."""
        return (math.isnan(self.min) or self.min <= other.min) and (
            math.isnan(self.max) or self.max >= other.max
        )

    def copy(self) -> Range:
        return Range(self.min, self.max)

    def as_tuple(self) -> tuple[float, float]:
        return (self.min, self.max)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Range):
            return NotImplemented
        return self.min == other.min and self.max == other.max

    def __lt__(self, other: Range) -> bool:
        if not isinstance(other, Range):
            return NotImplemented
        return (self.min, self.max) < (other.min, other.max)

    def __hash__(self) -> int:
        return hash((self.min, self.max))

    def __repr__(self) -> str:
        return f"[{self.min}, {self.max}]"


UNDEFINED_RANGE = Range(math.inf, -math.inf)


class RangeLimit(NamedTuple):
    """Sweep-line event: +1 at a range start, -1 at a range end."""

    position: float
    flag: int


# =============================================================================
# Range factories
# =============================================================================


class RangeFactory:
    """
    Allocator for Range instances and Range lists.

    Created per query or merge pass, reset between independent passes.
    Not synchronized: never share one instance between threads.
    """

    def value_of(self, min: float, max: float) -> Range:
        raise NotImplementedError

    def get_list(self) -> list[Range]:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError

    def dump_stats(self) -> None:
        raise NotImplementedError


class DefaultRangeFactory(RangeFactory):
    """Plain allocating factory that only counts what it creates."""

    def __init__(self) -> None:
        self.created_ranges = 0
        self.created_lists = 0

    def value_of(self, min: float, max: float) -> Range:
        self.created_ranges += 1
        return Range(min, max)

    def get_list(self) -> list[Range]:
        self.created_lists += 1
        return []

    def reset(self) -> None:
        # nothing to recycle
        pass

    def dump_stats(self) -> None:
        logger.info(
            f"DefaultRangeFactory: {self.created_ranges} ranges, "
            f"{self.created_lists} lists created"
        )


class PooledRangeFactory(RangeFactory):
    """
    Recycling factory: every Range handed out since the last reset() is
    returned to the pool by reset() and reused by later value_of() calls.

    Ranges obtained before a reset() must not be used after it.
    """

    def __init__(self) -> None:
        self._pool: list[Range] = []
        self._used = 0
        self._lists: list[list[Range]] = []
        self._used_lists = 0
        self.created_ranges = 0
        self.created_lists = 0

    def value_of(self, min: float, max: float) -> Range:
        if self._used < len(self._pool):
            range_ = self._pool[self._used]
            range_.set(min, max)
        else:
            range_ = Range(min, max)
            self._pool.append(range_)
            self.created_ranges += 1
        self._used += 1
        return range_

    def get_list(self) -> list[Range]:
        if self._used_lists < len(self._lists):
            ranges = self._lists[self._used_lists]
            ranges.clear()
        else:
            ranges = []
            self._lists.append(ranges)
            self.created_lists += 1
        self._used_lists += 1
        return ranges

    def reset(self) -> None:
        self._used = 0
        self._used_lists = 0

    @property
    def pool_size(self) -> int:
        return len(self._pool)

    def dump_stats(self) -> None:
        logger.info(
            f"PooledRangeFactory: {self._used}/{len(self._pool)} ranges used, "
            f"{self._used_lists}/{len(self._lists)} lists used"
        )


# =============================================================================
# Collection helpers
# =============================================================================


def contains(ranges: Iterable[Range] | None, value: float) -> bool:
    """True if any range contains value."""
    if ranges is None:
        return False
    return any(r.contains(value) for r in ranges)


def find(ranges: Sequence[Range], value: float, err: float | None = None) -> Range | None:
    """Return the first range containing value (with optional tolerance)."""
    for r in ranges:
        if r.contains(value, err):
            return r
    return None


def get_minimum(ranges: Sequence[Range] | None) -> float | None:
    """Smallest min over ranges, or None if empty."""
    if not ranges:
        return None
    return min(r.min for r in ranges)


def get_maximum(ranges: Sequence[Range] | None) -> float | None:
    """Largest max over ranges, or None if empty."""
    if not ranges:
        return None
    return max(r.max for r in ranges)


def ranges_equal(ranges: Sequence[Range] | None, other: Sequence[Range] | None) -> bool:
    """Element-wise equality of two range lists (both None compare equal)."""
    if ranges is None or other is None:
        return ranges is other
    return list(ranges) == list(other)


def match_range(selected: Iterable[Range], candidate: Range) -> bool:
    """True if any selected range overlaps candidate."""
    return any(sel.overlap(candidate) for sel in selected)


def match_ranges(selected: Iterable[Range], candidates: Collection[Range]) -> bool:
    """True if any selected range overlaps any candidate."""
    return any(sel.overlap(cand) for sel in selected for cand in candidates)


def match_fully(selected: Collection[Range] | Range, candidates: Collection[Range] | Range) -> bool:
    """
    Full-coverage test.

    With a single selected range: True if it fully contains at least one
    candidate. With a collection of selected ranges: True if every
    selected range fully contains at least one of the candidates.
    """
    if isinstance(selected, Range):
        cands = [candidates] if isinstance(candidates, Range) else candidates
        return any(selected.overlap_fully(cand) for cand in cands)

    cands = [candidates] if isinstance(candidates, Range) else candidates
    matched = {sel for sel in selected for cand in cands if sel.overlap_fully(cand)}
    return len(set(selected)) == len(matched)


def get_matching_selected(
    selected: Iterable[Range],
    candidates: Collection[Range] | Range,
    matching: set[Range],
) -> None:
    """Fill matching with the selected ranges overlapping any candidate."""
    matching.clear()
    cands = [candidates] if isinstance(candidates, Range) else candidates
    for sel in selected:
        if any(sel.overlap(cand) for cand in cands):
            matching.add(sel)


def get_matching_ranges(
    selected: Iterable[Range],
    candidates: Collection[Range],
    matching: set[Range],
) -> None:
    """Fill matching with the candidates overlapped by any selected range."""
    matching.clear()
    for sel in selected:
        for cand in candidates:
            if sel.overlap(cand):
                matching.add(cand)


def restrict_range(ranges: Sequence[Range], lo: float, hi: float) -> list[Range]:
    """
    Clip every range to [lo, hi].

    Ranges entirely outside are dropped, boundary-crossing ones are
    truncated and ranges already inside are kept as-is.

    Returns:
        New list of clipped ranges (possibly empty).
    """
    intervals: list[Range] = []

    for r in ranges:
        start, end = r.min, r.max

        if start >= lo:
            if end <= hi:
                intervals.append(r)
            elif start <= hi:
                intervals.append(Range(start, hi))
        elif end >= lo:
            intervals.append(Range(lo, min(end, hi)))

    return intervals


def union(ranges: list[Range]) -> None:
    """
    Merge overlapping or adjacent ranges in place.

    The list must already be sorted by min. Merging walks right to left:
    a range absorbs its successor when the successor starts at or before
    its max.
    """
    for j in range(len(ranges) - 1, 0, -1):
        left, right = ranges[j - 1], ranges[j]
        if left.max >= right.min:
            ranges[j - 1] = Range(left.min, max(left.max, right.max))
            del ranges[j]


def intersect_ranges(
    ranges: Sequence[Range],
    n_valid: int,
    factory: RangeFactory | None = None,
) -> list[Range]:
    """
    Sweep-line intersection of many ranges.

    Emits the intervals covered by exactly n_valid of the input ranges
    (points covered by more than n_valid ranges are not emitted).

    Args:
        ranges: Input ranges (any order).
        n_valid: Exact coverage count.
        factory: Allocator for the output ranges.

    Returns:
        Sorted list of disjoint intervals. Empty if fewer than n_valid
        ranges are given.

    Example:
        >>> intersect_ranges([Range(0, 10), Range(5, 15)], 1)
        [[0.0, 5.0], [10.0, 15.0]]
    """
    if factory is None:
        factory = DefaultRangeFactory()

    if len(ranges) < n_valid:
        return factory.get_list()

    limits = []
    for r in ranges:
        limits.append(RangeLimit(r.min, 1))
        limits.append(RangeLimit(r.max, -1))

    return intersect_limits(limits, n_valid, factory)


def intersect_limits(
    limits: Sequence[RangeLimit],
    n_valid: int,
    factory: RangeFactory,
) -> list[Range]:
    """Sweep over start/end events; see intersect_ranges()."""
    results = factory.get_list()
    n_limits = len(limits)

    if n_limits == 0 or n_limits < (n_valid >> 1):
        return results

    positions = np.fromiter((lim.position for lim in limits), dtype=np.float64, count=n_limits)
    flags = np.fromiter((lim.flag for lim in limits), dtype=np.int64, count=n_limits)

    # introsort: stability is not needed as empty intervals are skipped
    order = np.argsort(positions, kind="quicksort")
    positions = positions[order]
    running_sum = np.cumsum(flags[order])

    n_scan = min(n_limits - n_valid, n_limits - 1)
    if n_scan <= 0:
        return results

    valid = (running_sum[:n_scan] == n_valid) & (np.diff(positions)[:n_scan] > 0.0)

    for i in np.flatnonzero(valid):
        results.append(factory.value_of(positions[i], positions[i + 1]))

    return results
