from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from tripletreex.core.interval import Range
from tripletreex.gnp.problem import DegenerateRangeError
from tripletreex.gnp.triple_distance import TripleDistanceSq, TripleRangeDistanceSq


class Potential(Protocol):
    """Three-body interaction evaluated on squared pairwise distances."""

    def eval_unnorm_on_sq(self, distance_sq: TripleDistanceSq) -> np.ndarray:
        ...

    def range_unnorm_on_sq(self, triple_range: TripleRangeDistanceSq) -> Range:
        ...


@dataclass(frozen=True)
class ConstantPotential:
    """Every triple contributes ``value`` regardless of geometry."""

    value: float = 1.0

    def eval_unnorm_on_sq(self, distance_sq: TripleDistanceSq) -> np.ndarray:
        return np.full(len(distance_sq), float(self.value), dtype=np.float64)

    def range_unnorm_on_sq(self, triple_range: TripleRangeDistanceSq) -> Range:
        return Range.point(self.value)


@dataclass(frozen=True)
class InversePowerPotential:
    """``scale * (d01 * d02 * d12) ** -power`` for a triple of points.

    Diverges when two members coincide, so a zero squared distance (for
    points) or a zero lower distance bound (for nodes) raises
    :class:`DegenerateRangeError`.
    """

    power: float = 1.0
    scale: float = 1.0

    def __post_init__(self) -> None:
        if self.power <= 0:
            raise ValueError("InversePowerPotential.power must be positive.")

    def eval_unnorm_on_sq(self, distance_sq: TripleDistanceSq) -> np.ndarray:
        product = distance_sq.product_distance_sq()
        if np.any(product <= 0.0):
            raise DegenerateRangeError("Coincident points in a triple.")
        return self.scale * np.power(product, -0.5 * self.power)

    def range_unnorm_on_sq(self, triple_range: TripleRangeDistanceSq) -> Range:
        pairs = [
            triple_range.range_distance_sq(0, 1),
            triple_range.range_distance_sq(0, 2),
            triple_range.range_distance_sq(1, 2),
        ]
        lo_product = float(np.prod([pair.lo for pair in pairs]))
        hi_product = float(np.prod([pair.hi for pair in pairs]))
        if lo_product <= 0.0:
            raise DegenerateRangeError(
                "Zero minimum distance between nodes; the potential is unbounded."
            )
        near = self.scale * lo_product ** (-0.5 * self.power)
        far = self.scale * hi_product ** (-0.5 * self.power)
        return Range(min(near, far), max(near, far))


__all__ = [
    "ConstantPotential",
    "DegenerateRangeError",
    "InversePowerPotential",
    "Potential",
]
