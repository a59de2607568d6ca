"""Sorted sets of disjoint, non-touching byte ranges."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional


@dataclass(frozen=True)
class Range:
    """A half-open span of ``length`` positions starting at ``start``."""

    start: int
    length: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.length < 0:
            raise ValueError(
                f"range start and length must be non-negative, got {self.start}, {self.length}"
            )

    def end(self) -> int:
        """Return the first position after the range."""
        return self.start + self.length

    def __str__(self) -> str:
        return f"[{self.start}, {self.end() - 1}]"


class RangeSet:
    """A set of positions stored as sorted, merged ranges."""

    def __init__(self, ranges: Optional[Iterable[Range]] = None) -> None:
        self._ranges: list[Range] = []
        for range_ in ranges or ():
            self.add_range(range_)

    def __len__(self) -> int:
        """Return the number of positions covered by the set."""
        return sum(r.length for r in self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    def __iter__(self) -> Iterator[Range]:
        return iter(self._ranges)

    def __getitem__(self, index: int) -> Range:
        return self._ranges[index]

    def __contains__(self, value: int) -> bool:
        for r in self._ranges:
            if value < r.start:
                return False
            if value < r.end():
                return True
        return False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RangeSet):
            return NotImplemented
        return self._ranges == other._ranges

    def __repr__(self) -> str:
        return f"RangeSet({self._ranges!r})"

    def __str__(self) -> str:
        return "(" + "".join(str(r) for r in self._ranges) + ")"

    def copy(self) -> RangeSet:
        result = RangeSet()
        result._ranges = list(self._ranges)
        return result

    def contained_length_from_value(self, value: int) -> int:
        """Return how many consecutive positions from ``value`` are in the set."""
        for r in self._ranges:
            if value < r.start:
                return 0
            if value < r.end():
                return r.end() - value
        return 0

    def contains_range_set(self, other: RangeSet) -> bool:
        return all(
            self.contained_length_from_value(r.start) >= r.length for r in other
        )

    def add_range(self, range_: Range) -> None:
        if range_.length == 0:
            return

        for index, existing in enumerate(self._ranges):
            if range_.end() < existing.start:
                self._ranges.insert(index, range_)
                return
            if range_.start <= existing.end() and existing.start <= range_.end():
                # Overlapping or touching: merge with this and any following ranges.
                start, end = range_.start, range_.end()
                while index < len(self._ranges) and self._ranges[index].start <= end:
                    current = self._ranges.pop(index)
                    end = max(end, current.end())
                    start = min(start, current.start)
                self._ranges.insert(index, Range(start, end - start))
                return

        self._ranges.append(range_)

    def add_range_set(self, other: RangeSet) -> None:
        for range_ in other:
            self.add_range(range_)

    def union(self, other: RangeSet) -> RangeSet:
        result = self.copy()
        result.add_range_set(other)
        return result

    def subtract_range(self, range_: Range) -> None:
        if range_.length == 0:
            return

        for index, existing in enumerate(list(self._ranges)):
            if range_.end() <= existing.start:
                return
            if range_.start <= existing.start < range_.end():
                # Cut the beginning (or all) of this range and of any following ones.
                while index < len(self._ranges) and self._ranges[index].end() <= range_.end():
                    del self._ranges[index]
                if index < len(self._ranges) and self._ranges[index].start < range_.end():
                    current = self._ranges[index]
                    self._ranges[index] = Range(range_.end(), current.end() - range_.end())
                return
            if range_.end() < existing.end():
                # Punch a hole, leaving two smaller ranges.
                self._ranges[index] = Range(range_.end(), existing.end() - range_.end())
                self._ranges.insert(index, Range(existing.start, range_.start - existing.start))
                return
            if range_.start < existing.end():
                self._ranges[index] = Range(existing.start, range_.start - existing.start)

    def subtract_range_set(self, other: RangeSet) -> None:
        for range_ in other:
            self.subtract_range(range_)

    def minus(self, other: RangeSet) -> RangeSet:
        result = self.copy()
        result.subtract_range_set(other)
        return result

    def intersection(self, other: RangeSet) -> RangeSet:
        result = RangeSet()
        mine = iter(self._ranges)
        theirs = iter(other._ranges)
        a = next(mine, None)
        b = next(theirs, None)
        while a is not None and b is not None:
            if a.end() <= b.start:
                a = next(mine, None)
            elif b.end() <= a.start:
                b = next(theirs, None)
            else:
                start = max(a.start, b.start)
                end = min(a.end(), b.end())
                result.add_range(Range(start, end - start))
                if a.end() <= b.end():
                    a = next(mine, None)
                else:
                    b = next(theirs, None)
        return result