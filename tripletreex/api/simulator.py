from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from tripletreex.core.metrics import get_metric
from tripletreex.core.tree import PointTable, build_table
from tripletreex.diagnostics import log_operation
from tripletreex.gnp.tripletree_dfs import TraversalStats, TripletreeDfs
from tripletreex.logging import get_logger
from tripletreex.nbody.potentials import InversePowerPotential, Potential
from tripletreex.nbody.problem import NbodyResult, NbodySimulatorProblem

LOGGER = get_logger("api.simulator")


@dataclass(frozen=True)
class NbodySimulation:
    """Outcome of :meth:`NbodySimulator.compute`."""

    results: NbodyResult
    stats: TraversalStats
    table: PointTable

    @property
    def potential(self) -> np.ndarray:
        """Final per-point estimate, indexed like the input points."""

        return self.results.potential_e


@dataclass(frozen=True)
class NbodySimulator:
    """Thin façade: build the kd-tree, wire the n-body problem, run the traversal.

    Settings left as ``None`` fall back to the ``TRIPLETREEX_*`` runtime
    configuration.
    """

    points: Any
    potential: Potential = field(default_factory=InversePowerPotential)
    relative_error: float = 0.1
    probability: float = 1.0
    leaf_size: int | None = None
    metric: str | None = None
    summarize_policy: str | None = None
    monte_carlo_samples: int | None = None
    seed: int | None = None

    def compute(self) -> NbodySimulation:
        with log_operation(LOGGER, "nbody_simulate") as op_log:
            return self._compute_impl(op_log)

    def _compute_impl(self, op_log: Any) -> NbodySimulation:
        metric = get_metric(self.metric)
        build_start = time.perf_counter()
        table = build_table(self.points, leaf_size=self.leaf_size)
        build_seconds = time.perf_counter() - build_start

        problem = NbodySimulatorProblem(
            table,
            self.potential,
            relative_error=self.relative_error,
            probability=self.probability,
        )
        engine = TripletreeDfs(
            summarize_policy=self.summarize_policy,
            monte_carlo_samples=self.monte_carlo_samples,
            seed=self.seed,
        )
        engine.init(problem)
        results = engine.compute(metric)

        if op_log is not None:
            op_log.add_metadata(
                points=table.n_entries,
                dimension=table.dimension,
                build_ms=build_seconds * 1e3,
                traversal_ms=engine.stats.wall_seconds * 1e3,
                prunes=engine.stats.deterministic_prunes + engine.stats.monte_carlo_prunes,
            )
        return NbodySimulation(results=results, stats=engine.stats, table=table)


__all__ = ["NbodySimulation", "NbodySimulator"]
