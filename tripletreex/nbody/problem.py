from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np

from tripletreex.core.interval import Range
from tripletreex.core.metrics import Metric
from tripletreex.core.tree import PointTable
from tripletreex.gnp.monte_carlo import (
    MeanVariancePairs,
    compute_quantile,
    sample_distinct_offsets,
)
from tripletreex.gnp.triple_distance import (
    NUM_SLOTS,
    TripleDistanceSq,
    TripleRangeDistanceSq,
)
from tripletreex.nbody.potentials import Potential


def _split_sign(total: Range) -> Tuple[Range, Range]:
    """Split a contribution bound into its negative and positive parts."""

    if total.lo < 0.0:
        negative_lo, positive_lo = total.lo, 0.0
    else:
        negative_lo, positive_lo = 0.0, total.lo
    if total.hi > 0.0:
        negative_hi, positive_hi = 0.0, total.hi
    else:
        negative_hi, positive_hi = total.hi, 0.0
    return Range(negative_lo, negative_hi), Range(positive_lo, positive_hi)


class NbodyPostponed:
    """Contribution queued at a node for every point beneath it."""

    __slots__ = (
        "negative_potential",
        "positive_potential",
        "pruned",
        "used_error",
        "probabilistic_used_error",
    )

    def __init__(self, num_tuples: float = 0.0) -> None:
        self.set_zero()
        self.pruned = float(num_tuples)

    def set_zero(self) -> None:
        self.negative_potential = Range()
        self.positive_potential = Range()
        self.pruned = 0.0
        self.used_error = 0.0
        self.probabilistic_used_error = 0.0

    def apply_delta(self, delta: "NbodyDelta", slot: int) -> None:
        self.negative_potential = self.negative_potential + delta.negative_potential[slot]
        self.positive_potential = self.positive_potential + delta.positive_potential[slot]
        self.pruned += delta.pruned[slot]
        self.used_error += delta.used_error[slot]
        self.probabilistic_used_error = math.hypot(
            self.probabilistic_used_error, delta.probabilistic_used_error[slot]
        )

    def apply_postponed(self, other: "NbodyPostponed") -> None:
        self.negative_potential = self.negative_potential + other.negative_potential
        self.positive_potential = self.positive_potential + other.positive_potential
        self.pruned += other.pruned
        self.used_error += other.used_error
        self.probabilistic_used_error = math.hypot(
            self.probabilistic_used_error, other.probabilistic_used_error
        )


@dataclass
class NbodyDelta:
    """Per-slot bound for treating one node triple as a single unit."""

    negative_potential: List[Range] = field(default_factory=lambda: [Range()] * NUM_SLOTS)
    positive_potential: List[Range] = field(default_factory=lambda: [Range()] * NUM_SLOTS)
    pruned: List[float] = field(default_factory=lambda: [0.0] * NUM_SLOTS)
    used_error: List[float] = field(default_factory=lambda: [0.0] * NUM_SLOTS)
    probabilistic_used_error: List[float] = field(default_factory=lambda: [0.0] * NUM_SLOTS)

    def set_slot(
        self,
        slot: int,
        total: Range,
        pruned: float,
        used_error: float,
        probabilistic_used_error: float = 0.0,
    ) -> None:
        self.negative_potential[slot], self.positive_potential[slot] = _split_sign(total)
        self.pruned[slot] = pruned
        self.used_error[slot] = used_error
        self.probabilistic_used_error[slot] = probabilistic_used_error

    def copy_slot(self, source: int, target: int) -> None:
        self.negative_potential[target] = self.negative_potential[source]
        self.positive_potential[target] = self.positive_potential[source]
        self.pruned[target] = self.pruned[source]
        self.used_error[target] = self.used_error[source]
        self.probabilistic_used_error[target] = self.probabilistic_used_error[source]

    @classmethod
    def deterministic(
        cls, triple_range: TripleRangeDistanceSq, potential_range: Range
    ) -> "NbodyDelta":
        """Bound every spanned triple by ``potential_range``; estimate is its midpoint."""

        delta = cls()
        for slot in range(NUM_SLOTS):
            pruned = float(triple_range.num_tuples(slot))
            delta.set_slot(
                slot,
                potential_range.scale(pruned),
                pruned,
                pruned * 0.5 * potential_range.width,
            )
        return delta


class NbodyResult:
    """Per-point accumulator indexed by the caller's original point ids."""

    def __init__(self, num_points: int) -> None:
        self.negative_potential_lo = np.zeros(num_points, dtype=np.float64)
        self.negative_potential_hi = np.zeros(num_points, dtype=np.float64)
        self.positive_potential_lo = np.zeros(num_points, dtype=np.float64)
        self.positive_potential_hi = np.zeros(num_points, dtype=np.float64)
        self.potential_e = np.zeros(num_points, dtype=np.float64)
        self.pruned = np.zeros(num_points, dtype=np.float64)
        self.used_error = np.zeros(num_points, dtype=np.float64)
        self.probabilistic_used_error = np.zeros(num_points, dtype=np.float64)
        self.num_deterministic_prunes = 0
        self.num_monte_carlo_prunes = 0

    def apply_postponed(self, indices: np.ndarray, postponed: NbodyPostponed) -> None:
        """Add ``postponed`` to every point in ``indices`` (ids must be unique)."""

        self.negative_potential_lo[indices] += postponed.negative_potential.lo
        self.negative_potential_hi[indices] += postponed.negative_potential.hi
        self.positive_potential_lo[indices] += postponed.positive_potential.lo
        self.positive_potential_hi[indices] += postponed.positive_potential.hi
        self.pruned[indices] += postponed.pruned
        self.used_error[indices] += postponed.used_error
        self.probabilistic_used_error[indices] = np.hypot(
            self.probabilistic_used_error[indices], postponed.probabilistic_used_error
        )

    def apply_contributions(
        self,
        indices: Sequence[np.ndarray],
        contributions: Sequence[np.ndarray],
    ) -> None:
        """Scatter exact per-triple contributions; a point may repeat across rows."""

        for slot_indices, values in zip(indices, contributions):
            negative = np.minimum(values, 0.0)
            positive = np.maximum(values, 0.0)
            np.add.at(self.negative_potential_lo, slot_indices, negative)
            np.add.at(self.negative_potential_hi, slot_indices, negative)
            np.add.at(self.positive_potential_lo, slot_indices, positive)
            np.add.at(self.positive_potential_hi, slot_indices, positive)

    def post_process(self, metric: Metric, indices: np.ndarray, global_: "NbodyGlobal") -> None:
        self.potential_e[indices] = 0.5 * (
            self.negative_potential_lo[indices] + self.negative_potential_hi[indices]
        ) + 0.5 * (
            self.positive_potential_lo[indices] + self.positive_potential_hi[indices]
        )


class NbodySummary:
    """Bound over the accumulated results of every point beneath a node.

    Potential parts are unions over points, ``pruned`` is the minimum and
    the two error terms are maxima.
    """

    __slots__ = (
        "negative_potential",
        "positive_potential",
        "pruned",
        "used_error",
        "probabilistic_used_error",
    )

    def __init__(self) -> None:
        self.set_zero()

    def set_zero(self) -> None:
        self.negative_potential = Range()
        self.positive_potential = Range()
        self.pruned = 0.0
        self.used_error = 0.0
        self.probabilistic_used_error = 0.0

    def copy(self) -> "NbodySummary":
        clone = NbodySummary()
        clone.negative_potential = self.negative_potential
        clone.positive_potential = self.positive_potential
        clone.pruned = self.pruned
        clone.used_error = self.used_error
        clone.probabilistic_used_error = self.probabilistic_used_error
        return clone

    def start_reaccumulate(self) -> None:
        self.negative_potential = Range.empty()
        self.positive_potential = Range.empty()
        self.pruned = math.inf
        self.used_error = 0.0
        self.probabilistic_used_error = 0.0

    def accumulate(self, results: NbodyResult, indices: np.ndarray) -> None:
        if len(indices) == 0:
            return
        self.negative_potential = self.negative_potential | Range(
            float(results.negative_potential_lo[indices].min()),
            float(results.negative_potential_hi[indices].max()),
        )
        self.positive_potential = self.positive_potential | Range(
            float(results.positive_potential_lo[indices].min()),
            float(results.positive_potential_hi[indices].max()),
        )
        self.pruned = min(self.pruned, float(results.pruned[indices].min()))
        self.used_error = max(self.used_error, float(results.used_error[indices].max()))
        self.probabilistic_used_error = max(
            self.probabilistic_used_error,
            float(results.probabilistic_used_error[indices].max()),
        )

    def accumulate_child(self, summary: "NbodySummary", postponed: NbodyPostponed) -> None:
        self.negative_potential = self.negative_potential | (
            summary.negative_potential + postponed.negative_potential
        )
        self.positive_potential = self.positive_potential | (
            summary.positive_potential + postponed.positive_potential
        )
        self.pruned = min(self.pruned, summary.pruned + postponed.pruned)
        self.used_error = max(self.used_error, summary.used_error + postponed.used_error)
        self.probabilistic_used_error = max(
            self.probabilistic_used_error,
            math.hypot(summary.probabilistic_used_error, postponed.probabilistic_used_error),
        )

    def apply_postponed(self, postponed: NbodyPostponed) -> None:
        self.negative_potential = self.negative_potential + postponed.negative_potential
        self.positive_potential = self.positive_potential + postponed.positive_potential
        self.pruned += postponed.pruned
        self.used_error += postponed.used_error
        self.probabilistic_used_error = math.hypot(
            self.probabilistic_used_error, postponed.probabilistic_used_error
        )

    def apply_delta(self, delta: NbodyDelta, slot: int) -> None:
        self.negative_potential = self.negative_potential + delta.negative_potential[slot]
        self.positive_potential = self.positive_potential + delta.positive_potential[slot]

    def can_summarize(
        self,
        global_: "NbodyGlobal",
        delta: NbodyDelta,
        slot: int,
        postponed: NbodyPostponed,
    ) -> bool:
        """Whether ``delta`` fits this node's share of the remaining error budget.

        The error already spent plus the delta's error must stay within
        ``relative_error`` times the smallest possible magnitude of the
        accumulated potential, in proportion to the tuples the delta resolves
        out of those still unresolved.
        """

        candidate = self.copy()
        candidate.apply_postponed(postponed)
        candidate.apply_delta(delta, slot)
        remaining = global_.total_num_tuples - candidate.pruned
        if remaining <= 0:
            return False
        magnitude = max(-candidate.negative_potential.hi, candidate.positive_potential.lo)
        budget = (
            global_.relative_error * magnitude
            - candidate.used_error
            - candidate.probabilistic_used_error
        )
        left_hand_side = delta.used_error[slot] + delta.probabilistic_used_error[slot]
        right_hand_side = delta.pruned[slot] * budget / remaining
        return left_hand_side <= right_hand_side


class NbodyStatistic:
    __slots__ = ("postponed", "summary")

    def __init__(self) -> None:
        self.postponed = NbodyPostponed()
        self.summary = NbodySummary()

    def set_zero(self) -> None:
        self.postponed.set_zero()
        self.summary.set_zero()


@dataclass(frozen=True)
class NbodyGlobal:
    """Read-only parameters shared by every step of one computation."""

    table: PointTable
    potential: Potential
    relative_error: float = 0.1
    probability: float = 1.0

    def __post_init__(self) -> None:
        if self.relative_error < 0:
            raise ValueError("relative_error must be non-negative.")
        if not 0.0 < self.probability <= 1.0:
            raise ValueError("probability must lie in (0, 1].")

    @property
    def total_num_tuples(self) -> int:
        """Number of unordered triples containing any one point."""

        return math.comb(max(self.table.n_entries - 1, 0), 2)

    def compute_quantile(self, tail_mass: float) -> float:
        return compute_quantile(tail_mass)

    def apply_contribution(self, distance_sq: TripleDistanceSq) -> Tuple[np.ndarray, ...]:
        """Exact contribution of each triple to each of its three points."""

        values = np.asarray(self.potential.eval_unnorm_on_sq(distance_sq), dtype=np.float64)
        return (values, values, values)


class NbodySimulatorProblem:
    """Three-body potential summation plugged into :class:`TripletreeDfs`."""

    def __init__(
        self,
        table: PointTable,
        potential: Potential,
        *,
        relative_error: float = 0.1,
        probability: float = 1.0,
    ) -> None:
        self._table = table
        self._global = NbodyGlobal(
            table=table,
            potential=potential,
            relative_error=relative_error,
            probability=probability,
        )

    @property
    def table(self) -> PointTable:
        return self._table

    @property
    def global_(self) -> NbodyGlobal:
        return self._global

    def new_statistic(self) -> NbodyStatistic:
        return NbodyStatistic()

    def new_result(self) -> NbodyResult:
        return NbodyResult(self._table.n_entries)

    def compute_delta(self, metric: Metric, triple_range: TripleRangeDistanceSq) -> NbodyDelta:
        potential_range = self._global.potential.range_unnorm_on_sq(triple_range)
        return NbodyDelta.deterministic(triple_range, potential_range)

    def monte_carlo_delta(
        self,
        metric: Metric,
        triple_range: TripleRangeDistanceSq,
        failure_probability: float,
        scratch: MeanVariancePairs,
        rng: np.random.Generator,
        num_samples: int,
    ) -> NbodyDelta:
        """Estimate each distinct node's per-point contribution by sampling.

        Every point of a node draws ``num_samples`` uniformly random partner
        pairs from the triples it spans, so all points of the node share one
        midpoint estimate. ``used_error`` covers the spread of the per-point
        means; ``probabilistic_used_error`` is the normal-quantile bound on
        the sampling error.
        """

        if num_samples <= 0:
            raise ValueError("num_samples must be positive.")
        z_score = self._global.compute_quantile(failure_probability)
        distinct = triple_range.distinct_slots()
        groups = triple_range.multiplicities()
        delta = NbodyDelta()
        for slot in range(NUM_SLOTS):
            if slot not in distinct:
                delta.copy_slot(slot - 1, slot)
                continue
            node = triple_range.node(slot)
            count = node.count
            size = count * num_samples
            members = [np.repeat(np.arange(node.begin, node.end, dtype=np.int64), num_samples)]
            own = np.repeat(np.arange(count, dtype=np.int64), num_samples)
            for group_node, multiplicity in groups:
                if group_node is node:
                    offsets = sample_distinct_offsets(
                        rng, group_node.count, multiplicity - 1, size, exclude=own
                    )
                else:
                    offsets = sample_distinct_offsets(rng, group_node.count, multiplicity, size)
                members.extend(group_node.begin + offsets[:, k] for k in range(offsets.shape[1]))

            distance_sq = TripleDistanceSq.from_positions(metric, self._table, *members)
            samples = np.asarray(
                self._global.potential.eval_unnorm_on_sq(distance_sq), dtype=np.float64
            ).reshape(count, num_samples)
            point_ids = self._table.node_indices(node)
            scratch.reset(point_ids)
            scratch.push(point_ids, samples)
            means = scratch.mean(point_ids)
            stds = scratch.std(point_ids)

            pruned = float(triple_range.num_tuples(slot))
            spread = Range(float(means.min()), float(means.max()))
            delta.set_slot(
                slot,
                spread.scale(pruned),
                pruned,
                pruned * 0.5 * spread.width,
                pruned * z_score * float(stds.max()) / math.sqrt(num_samples),
            )
        return delta


__all__ = [
    "NbodyDelta",
    "NbodyGlobal",
    "NbodyPostponed",
    "NbodyResult",
    "NbodySimulatorProblem",
    "NbodyStatistic",
    "NbodySummary",
]
