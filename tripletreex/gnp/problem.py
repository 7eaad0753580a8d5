from __future__ import annotations

from typing import Any, Protocol, Sequence

import numpy as np

from tripletreex.core.metrics import Metric
from tripletreex.core.tree import PointTable
from tripletreex.gnp.monte_carlo import MeanVariancePairs
from tripletreex.gnp.triple_distance import TripleRangeDistanceSq


class DegenerateRangeError(ValueError):
    """Raised when an interaction bound is undefined for the given distances.

    Typical cause: a zero minimum distance between two nodes or two points
    for a potential that diverges at zero separation.
    """


class Postponed(Protocol):
    """Deferred additive update queued at a node (commutative monoid)."""

    pruned: float

    def set_zero(self) -> None:
        ...

    def apply_postponed(self, other: Any) -> None:
        ...

    def apply_delta(self, delta: Any, slot: int) -> None:
        ...


class Summary(Protocol):
    """Conservative bound over the accumulated results beneath a node."""

    def set_zero(self) -> None:
        ...

    def copy(self) -> Any:
        ...

    def start_reaccumulate(self) -> None:
        ...

    def accumulate(self, results: Any, indices: np.ndarray) -> None:
        ...

    def accumulate_child(self, summary: Any, postponed: Any) -> None:
        ...

    def apply_postponed(self, postponed: Any) -> None:
        ...

    def apply_delta(self, delta: Any, slot: int) -> None:
        ...

    def can_summarize(self, global_: Any, delta: Any, slot: int, postponed: Any) -> bool:
        ...


class Statistic(Protocol):
    postponed: Any
    summary: Any

    def set_zero(self) -> None:
        ...


class Delta(Protocol):
    pruned: Sequence[float]


class Result(Protocol):
    num_deterministic_prunes: int
    num_monte_carlo_prunes: int

    def apply_postponed(self, indices: np.ndarray, postponed: Any) -> None:
        ...

    def apply_contributions(self, indices: np.ndarray, contributions: Any) -> None:
        ...

    def post_process(self, metric: Metric, indices: np.ndarray, global_: Any) -> None:
        ...


class Global(Protocol):
    relative_error: float
    probability: float
    total_num_tuples: int

    def apply_contribution(self, distance_sq: Any) -> Any:
        ...


class Problem(Protocol):
    """Everything the triple-tree engine needs from one interaction module."""

    @property
    def table(self) -> PointTable:
        ...

    @property
    def global_(self) -> Global:
        ...

    def new_statistic(self) -> Statistic:
        ...

    def new_result(self) -> Result:
        ...

    def compute_delta(self, metric: Metric, triple_range: TripleRangeDistanceSq) -> Delta:
        ...

    def monte_carlo_delta(
        self,
        metric: Metric,
        triple_range: TripleRangeDistanceSq,
        failure_probability: float,
        scratch: MeanVariancePairs,
        rng: np.random.Generator,
        num_samples: int,
    ) -> Delta:
        ...


__all__ = [
    "DegenerateRangeError",
    "Delta",
    "Global",
    "Postponed",
    "Problem",
    "Result",
    "Statistic",
    "Summary",
]
