from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Range:
    """Closed interval ``[lo, hi]`` used for bounds on sums and distances.

    ``Range.empty()`` (``lo = +inf``, ``hi = -inf``) is the identity of the
    union operator and is the starting point when re-accumulating a bound
    from scratch.
    """

    lo: float = 0.0
    hi: float = 0.0

    @classmethod
    def point(cls, value: float) -> "Range":
        return cls(float(value), float(value))

    @classmethod
    def empty(cls) -> "Range":
        return cls(math.inf, -math.inf)

    @property
    def width(self) -> float:
        return self.hi - self.lo

    def __add__(self, other: "Range") -> "Range":
        return Range(self.lo + other.lo, self.hi + other.hi)

    def __or__(self, other: "Range") -> "Range":
        return Range(min(self.lo, other.lo), max(self.hi, other.hi))

    def scale(self, factor: float) -> "Range":
        if factor < 0:
            raise ValueError("Range.scale expects a non-negative factor.")
        return Range(self.lo * factor, self.hi * factor)


__all__ = ["Range"]
