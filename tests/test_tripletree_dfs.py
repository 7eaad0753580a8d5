from math import comb

import numpy as np
import pytest

from tripletreex.core.interval import Range
from tripletreex.core.metrics import get_metric
from tripletreex.core.tree import build_table
from tripletreex.gnp._base_case_numba import NUMBA_BASE_CASE_AVAILABLE
from tripletreex.gnp.problem import DegenerateRangeError
from tripletreex.gnp.tripletree_dfs import TraversalStats, TripletreeDfs
from tripletreex.nbody.potentials import ConstantPotential, InversePowerPotential
from tripletreex.nbody.problem import NbodyPostponed, NbodySimulatorProblem

from tests.utils.datasets import (
    brute_force_triples,
    clustered_points,
    gaussian_points,
    inverse_power_triple,
)


class DistinctTriplePotential:
    """Contributes 1 for three distinct points and 0 when any two coincide."""

    def eval_unnorm_on_sq(self, distance_sq):
        return np.where(distance_sq.min_distance_sq() > 0.0, 1.0, 0.0)

    def range_unnorm_on_sq(self, triple_range):
        return Range(0.0, 1.0)


class LooseConstantPotential:
    """Constant contribution behind a deliberately loose node bound."""

    def __init__(self, value: float = 1.0) -> None:
        self.value = value

    def eval_unnorm_on_sq(self, distance_sq):
        return np.full(len(distance_sq), self.value)

    def range_unnorm_on_sq(self, triple_range):
        return Range(0.0, 10.0 * self.value)


def _run(
    points,
    potential,
    *,
    leaf_size,
    policy,
    relative_error=0.1,
    probability=1.0,
    **engine_kwargs,
):
    table = build_table(points, leaf_size=leaf_size)
    problem = NbodySimulatorProblem(
        table, potential, relative_error=relative_error, probability=probability
    )
    engine_kwargs.setdefault("monte_carlo_samples", 0)
    engine = TripletreeDfs(summarize_policy=policy, **engine_kwargs)
    engine.init(problem)
    results = engine.compute(get_metric("euclidean"))
    return engine, results


def test_every_triple_is_resolved_exactly_once_without_pruning():
    points = gaussian_points(np.random.default_rng(0), 37, 2)

    engine, results = _run(points, InversePowerPotential(), leaf_size=4, policy="never")

    assert engine.stats.tuples_resolved == comb(37, 3)
    assert np.all(results.pruned == comb(36, 2))
    assert engine.stats.deterministic_prunes == 0
    assert engine.stats.canonical_steps > 0
    assert engine.stats.base_cases > 0


def test_exhaustive_traversal_matches_brute_force():
    points = gaussian_points(np.random.default_rng(1), 25, 3)

    _, results = _run(points, InversePowerPotential(), leaf_size=3, policy="never")

    expected = brute_force_triples(points, inverse_power_triple())
    assert np.allclose(results.potential_e, expected, rtol=1e-10)
    assert np.all(results.used_error == 0.0)
    assert np.allclose(results.positive_potential_lo, results.positive_potential_hi)


def test_pruned_traversal_stays_within_relative_error():
    points = clustered_points(np.random.default_rng(2), clusters=4, per_cluster=16)
    relative_error = 0.5

    engine, results = _run(
        points,
        InversePowerPotential(),
        leaf_size=4,
        policy="deterministic",
        relative_error=relative_error,
    )

    expected = brute_force_triples(points, inverse_power_triple())
    error = np.abs(results.potential_e - expected)
    assert engine.stats.deterministic_prunes > 0
    assert results.num_deterministic_prunes == engine.stats.deterministic_prunes
    assert engine.stats.tuples_resolved == comb(64, 3)
    assert np.all(results.pruned == comb(63, 2))
    assert np.all(error <= relative_error * expected * (1.0 + 1e-9))
    assert np.all(error <= results.used_error + 1e-9 * expected)


def test_degenerate_bounds_fall_back_to_descent():
    points = gaussian_points(np.random.default_rng(3), 30, 2)

    engine, results = _run(
        points,
        InversePowerPotential(),
        leaf_size=4,
        policy="deterministic",
        relative_error=0.2,
    )

    expected = brute_force_triples(points, inverse_power_triple())
    # The root triple always overlaps itself.
    assert engine.stats.degenerate_deltas > 0
    assert np.all(np.abs(results.potential_e - expected) <= 0.2 * expected * (1.0 + 1e-9))


def test_coincident_points_raise_during_exact_evaluation():
    points = np.array([[0.0, 0.0], [0.0, 0.0], [1.0, 0.0], [0.0, 2.0]])

    with pytest.raises(DegenerateRangeError):
        _run(points, InversePowerPotential(), leaf_size=4, policy="never")


@pytest.mark.parametrize("leaf_size", [1, 2, 4])
@pytest.mark.parametrize("policy", ["never", "deterministic"])
def test_four_points_constant_interaction(leaf_size, policy):
    points = gaussian_points(np.random.default_rng(4), 4, 2)
    value = 2.5

    engine, results = _run(
        points, ConstantPotential(value), leaf_size=leaf_size, policy=policy
    )

    assert np.allclose(results.potential_e, 3 * value)
    assert np.all(results.pruned == 3)
    assert engine.stats.tuples_resolved == 4


def test_constant_interaction_prunes_at_the_root():
    points = gaussian_points(np.random.default_rng(5), 50, 2)

    engine, results = _run(
        points, ConstantPotential(-1.0), leaf_size=4, policy="deterministic"
    )

    assert engine.stats.deterministic_prunes == 1
    assert engine.stats.base_cases == 0
    assert np.allclose(results.potential_e, -comb(49, 2))


def test_post_process_is_idempotent():
    points = gaussian_points(np.random.default_rng(6), 40, 2)
    engine, results = _run(
        points, InversePowerPotential(), leaf_size=4, policy="deterministic"
    )
    before = results.potential_e.copy()
    pruned = results.pruned.copy()

    engine.post_process(get_metric("euclidean"), results)

    assert np.array_equal(results.potential_e, before)
    assert np.array_equal(results.pruned, pruned)


def test_disabling_the_agreement_rule_overcounts_six_times():
    points = gaussian_points(np.random.default_rng(7), 7, 2)

    _, canonical = _run(points, DistinctTriplePotential(), leaf_size=1, policy="never")
    _, unordered = _run(
        points,
        DistinctTriplePotential(),
        leaf_size=1,
        policy="never",
        enforce_canonical_order=False,
    )

    assert np.allclose(canonical.potential_e, comb(6, 2))
    assert np.allclose(unordered.potential_e, 6 * comb(6, 2))


def test_recursion_restores_every_slot(monkeypatch: pytest.MonkeyPatch):
    original = TripletreeDfs._canonical
    visited = []

    def checking(self, state, triple_range, relative_error, failure_probability):
        nodes = triple_range.nodes
        ranges = [triple_range.range_distance_sq(i, j) for i, j in ((0, 1), (0, 2), (1, 2))]
        exact = original(self, state, triple_range, relative_error, failure_probability)
        assert triple_range.nodes == nodes
        assert [
            triple_range.range_distance_sq(i, j) for i, j in ((0, 1), (0, 2), (1, 2))
        ] == ranges
        visited.append(nodes)
        return exact

    monkeypatch.setattr(TripletreeDfs, "_canonical", checking)
    points = gaussian_points(np.random.default_rng(8), 30, 2)

    _run(points, InversePowerPotential(), leaf_size=3, policy="never")

    assert len(visited) > 1


def test_summaries_cover_final_results():
    points = gaussian_points(np.random.default_rng(9), 45, 2)
    engine, results = _run(points, InversePowerPotential(), leaf_size=4, policy="never")
    table = engine.table
    tol = 1e-9 * float(results.potential_e.max())

    for node in [table.tree, *table.leaves()]:
        summary = node.stat.summary
        ids = table.node_indices(node)
        assert summary.positive_potential.lo <= results.positive_potential_lo[ids].min() + tol
        assert summary.positive_potential.hi >= results.positive_potential_hi[ids].max() - tol
        assert summary.pruned <= results.pruned[ids].min()
        assert node.stat.postponed.pruned == 0.0


def test_root_summary_is_sound_with_pruning():
    points = clustered_points(np.random.default_rng(10), clusters=4, per_cluster=12)
    engine, results = _run(
        points,
        InversePowerPotential(),
        leaf_size=3,
        policy="deterministic",
        relative_error=0.5,
    )
    summary = engine.table.tree.stat.summary
    tol = 1e-9 * float(results.positive_potential_hi.max())

    assert summary.positive_potential.lo <= results.positive_potential_lo.min() + tol
    assert summary.positive_potential.hi >= results.positive_potential_hi.max() - tol
    assert summary.pruned <= results.pruned.min()
    assert summary.used_error >= results.used_error.max() - tol


def test_every_node_summary_covers_its_points_with_pruning(monkeypatch: pytest.MonkeyPatch):
    # Postponed still queued on a node or its ancestors when the traversal
    # ends is flushed by post_process, so record it per node first.
    pending = {}
    flush = TripletreeDfs.post_process

    def recording(self, metric, results):
        stack = [(self.table.tree, NbodyPostponed())]
        while stack:
            node, inherited = stack.pop()
            queued = NbodyPostponed()
            queued.apply_postponed(inherited)
            queued.apply_postponed(node.stat.postponed)
            pending[id(node)] = queued
            stack.extend((child, queued) for child in node.children())
        flush(self, metric, results)

    monkeypatch.setattr(TripletreeDfs, "post_process", recording)
    points = clustered_points(np.random.default_rng(18), clusters=4, per_cluster=12)

    engine, results = _run(
        points,
        InversePowerPotential(scale=-1.0),
        leaf_size=3,
        policy="deterministic",
        relative_error=0.5,
    )

    table = engine.table
    tol = 1e-9 * float(np.abs(results.negative_potential_lo).max())
    internal = [node for node in table.nodes() if not node.is_leaf and node is not table.tree]
    assert engine.stats.deterministic_prunes > 0
    assert internal
    assert np.all(results.potential_e < 0.0)
    for node in table.nodes():
        summary = node.stat.summary
        queued = pending[id(node)]
        ids = table.node_indices(node)
        negative = summary.negative_potential + queued.negative_potential
        positive = summary.positive_potential + queued.positive_potential
        assert negative.lo <= results.negative_potential_lo[ids].min() + tol
        assert negative.hi >= results.negative_potential_hi[ids].max() - tol
        assert positive.lo <= results.positive_potential_lo[ids].min() + tol
        assert positive.hi >= results.positive_potential_hi[ids].max() - tol
        assert summary.pruned + queued.pruned <= results.pruned[ids].min()
        assert summary.used_error + queued.used_error >= results.used_error[ids].max() - tol


def test_coincident_points_with_a_finite_interaction():
    points = np.zeros((60, 2))

    engine, results = _run(points, ConstantPotential(1.0), leaf_size=4, policy="never")

    assert all(leaf.count <= 4 for leaf in engine.table.leaves())
    assert engine.stats.tuples_resolved == comb(60, 3)
    assert np.allclose(results.potential_e, comb(59, 2))


def test_monte_carlo_summarization_on_loose_bounds():
    points = gaussian_points(np.random.default_rng(11), 64, 2)

    engine, results = _run(
        points,
        LooseConstantPotential(1.0),
        leaf_size=4,
        policy="deterministic",
        probability=0.9,
        monte_carlo_samples=4,
        seed=0,
    )

    assert engine.stats.monte_carlo_prunes > 0
    assert results.num_monte_carlo_prunes == engine.stats.monte_carlo_prunes
    assert engine.stats.tuples_resolved == comb(64, 3)
    assert np.allclose(results.potential_e, comb(63, 2))
    assert np.all(results.pruned == comb(63, 2))


def test_monte_carlo_run_keeps_tuple_accounting():
    points = clustered_points(np.random.default_rng(12), clusters=3, per_cluster=20)

    engine, results = _run(
        points,
        InversePowerPotential(),
        leaf_size=4,
        policy="deterministic",
        relative_error=0.3,
        probability=0.95,
        monte_carlo_samples=8,
        monte_carlo_min_tuples=40,
        seed=3,
    )

    assert engine.stats.tuples_resolved == comb(60, 3)
    assert np.all(results.pruned == comb(59, 2))
    assert np.all(np.isfinite(results.potential_e))


def test_never_policy_skips_monte_carlo():
    points = gaussian_points(np.random.default_rng(13), 40, 2)

    engine, _ = _run(
        points,
        LooseConstantPotential(1.0),
        leaf_size=4,
        policy="never",
        monte_carlo_samples=4,
    )

    assert engine.stats.monte_carlo_prunes == 0
    assert engine.stats.deterministic_prunes == 0


def test_compute_before_init_is_rejected():
    engine = TripletreeDfs(summarize_policy="never")

    with pytest.raises(RuntimeError):
        engine.compute()
    with pytest.raises(RuntimeError):
        engine.reset_statistic()
    assert engine.stats == TraversalStats()


def test_node_without_statistic_is_rejected():
    table = build_table(gaussian_points(np.random.default_rng(14), 20, 2), leaf_size=4)
    engine = TripletreeDfs(summarize_policy="never", monte_carlo_samples=0)
    engine.init(NbodySimulatorProblem(table, ConstantPotential()))
    table.tree.left.stat = None

    with pytest.raises(RuntimeError):
        engine.compute()


def test_invalid_engine_settings_are_rejected():
    with pytest.raises(ValueError):
        TripletreeDfs(summarize_policy="always")
    with pytest.raises(ValueError):
        TripletreeDfs(monte_carlo_samples=-1)


def test_compute_can_run_twice_with_same_results():
    points = gaussian_points(np.random.default_rng(15), 30, 2)
    table = build_table(points, leaf_size=4)
    engine = TripletreeDfs(summarize_policy="deterministic", monte_carlo_samples=0)
    engine.init(NbodySimulatorProblem(table, InversePowerPotential(), relative_error=0.2))

    first = engine.compute().potential_e.copy()
    second = engine.compute().potential_e

    assert np.array_equal(first, second)


def test_scratch_buffer_size_is_checked():
    from tripletreex.gnp.monte_carlo import MeanVariancePairs

    table = build_table(gaussian_points(np.random.default_rng(16), 20, 2), leaf_size=4)
    engine = TripletreeDfs(summarize_policy="deterministic", monte_carlo_samples=4)
    engine.init(NbodySimulatorProblem(table, ConstantPotential()))

    with pytest.raises(ValueError):
        engine.compute(scratch=MeanVariancePairs(3))


@pytest.mark.skipif(not NUMBA_BASE_CASE_AVAILABLE, reason="numba is unavailable")
def test_numba_base_case_matches_numpy():
    points = gaussian_points(np.random.default_rng(17), 33, 2)

    numba_engine, numba_results = _run(
        points, InversePowerPotential(), leaf_size=4, policy="never", enable_numba=True
    )
    _, numpy_results = _run(
        points, InversePowerPotential(), leaf_size=4, policy="never", enable_numba=False
    )

    assert numba_engine.uses_numba
    assert np.allclose(numba_results.potential_e, numpy_results.potential_e, rtol=1e-12)
