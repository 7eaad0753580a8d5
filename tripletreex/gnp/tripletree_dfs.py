from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Optional

import numpy as np

from tripletreex import config as cx_config
from tripletreex.core.metrics import Metric, get_metric
from tripletreex.core.tree import PointTable, TreeNode
from tripletreex.diagnostics import log_operation
from tripletreex.gnp._base_case_numba import (
    NUMBA_BASE_CASE_AVAILABLE,
    enumerate_canonical_triples,
    enumerate_triples_numba,
)
from tripletreex.gnp.monte_carlo import MeanVariancePairs
from tripletreex.gnp.problem import DegenerateRangeError, Problem
from tripletreex.gnp.triple_distance import (
    NUM_SLOTS,
    TripleDistanceSq,
    TripleRangeDistanceSq,
)
from tripletreex.logging import get_logger

LOGGER = get_logger("gnp.tripletree_dfs")


@dataclass(frozen=True)
class TraversalStats:
    """Counters collected during the most recent ``TripletreeDfs.compute``."""

    canonical_steps: int = 0
    base_cases: int = 0
    deterministic_prunes: int = 0
    monte_carlo_prunes: int = 0
    degenerate_deltas: int = 0
    tuples_resolved: int = 0
    wall_seconds: float = 0.0


@dataclass
class _Counters:
    canonical_steps: int = 0
    base_cases: int = 0
    deterministic_prunes: int = 0
    monte_carlo_prunes: int = 0
    degenerate_deltas: int = 0
    tuples_resolved: int = 0

    def freeze(self, wall_seconds: float) -> TraversalStats:
        return TraversalStats(wall_seconds=wall_seconds, **asdict(self))


@dataclass
class _TraversalState:
    metric: Metric
    results: Any
    scratch: Optional[MeanVariancePairs]
    rng: np.random.Generator
    counters: _Counters


class TripletreeDfs:
    """Depth-first triple-tree traversal over all unordered point triples.

    Three slots each hold a tree node. Slots are split in lockstep; a
    combination is kept only when consecutive slots are agreeable, i.e. the
    same node or index ranges in non-decreasing order, which visits every
    unordered point triple exactly once. At each node triple the engine
    first asks the problem for a bound (``compute_delta``); if the bound fits
    the remaining error budget of every distinct node it is queued on the
    nodes' postponed statistics instead of being evaluated point by point.

    Keyword arguments left as ``None`` fall back to :func:`runtime_config`.
    ``enforce_canonical_order=False`` disables the agreement rule and exists
    only to demonstrate over-counting in tests.
    """

    def __init__(
        self,
        *,
        summarize_policy: str | None = None,
        monte_carlo_samples: int | None = None,
        monte_carlo_min_tuples: int | None = None,
        enable_numba: bool | None = None,
        seed: int | None = None,
        enforce_canonical_order: bool = True,
    ) -> None:
        runtime = cx_config.runtime_config()
        policy = runtime.summarize_policy if summarize_policy is None else summarize_policy
        policy = policy.strip().lower()
        if policy not in cx_config.SUMMARIZE_POLICIES:
            raise ValueError(
                f"Unsupported summarize policy '{policy}'. "
                f"Expected one of {cx_config.SUMMARIZE_POLICIES}."
            )
        samples = runtime.monte_carlo_samples if monte_carlo_samples is None else monte_carlo_samples
        min_tuples = (
            runtime.monte_carlo_min_tuples
            if monte_carlo_min_tuples is None
            else monte_carlo_min_tuples
        )
        if samples < 0 or min_tuples < 0:
            raise ValueError("Monte Carlo sample and tuple thresholds must be non-negative.")
        numba_requested = runtime.enable_numba if enable_numba is None else enable_numba

        self._summarize_policy = policy
        self._monte_carlo_samples = int(samples)
        self._monte_carlo_min_tuples = int(min_tuples)
        self._use_numba = bool(numba_requested) and NUMBA_BASE_CASE_AVAILABLE
        self._seed = runtime.seed if seed is None else seed
        self._enforce_canonical_order = enforce_canonical_order
        self._problem: Optional[Problem] = None
        self._table: Optional[PointTable] = None
        self._stats = TraversalStats()

    @property
    def problem(self) -> Optional[Problem]:
        return self._problem

    @property
    def table(self) -> Optional[PointTable]:
        return self._table

    @property
    def stats(self) -> TraversalStats:
        return self._stats

    @property
    def summarize_policy(self) -> str:
        return self._summarize_policy

    @property
    def uses_numba(self) -> bool:
        return self._use_numba

    def init(self, problem: Problem) -> None:
        self._problem = problem
        self._table = problem.table
        self.reset_statistic()

    def reset_statistic(self) -> None:
        """Attach a fresh, zeroed statistic to every node of the tree."""

        problem, table = self._require_init()
        for node in table.nodes():
            stat = problem.new_statistic()
            stat.set_zero()
            node.stat = stat

    def compute(
        self,
        metric: Metric | None = None,
        *,
        scratch: MeanVariancePairs | None = None,
    ) -> Any:
        """Run the traversal and return the post-processed result accumulator.

        ``scratch`` is the per-point Monte Carlo buffer; one is allocated
        when sampling is enabled and none is supplied.
        """

        self._require_init()
        with log_operation(LOGGER, "tripletree_compute") as op_log:
            return self._compute_impl(op_log, metric, scratch)

    def _compute_impl(
        self,
        op_log: Any,
        metric: Metric | None,
        scratch: MeanVariancePairs | None,
    ) -> Any:
        problem, table = self._require_init()
        if metric is None:
            metric = get_metric()
        if scratch is None and self._monte_carlo_samples > 0:
            scratch = MeanVariancePairs(table.n_entries)
        if scratch is not None and len(scratch) != table.n_entries:
            raise ValueError(
                f"Scratch buffer holds {len(scratch)} entries, expected {table.n_entries}."
            )

        state = _TraversalState(
            metric=metric,
            results=problem.new_result(),
            scratch=scratch,
            rng=np.random.default_rng(self._seed),
            counters=_Counters(),
        )
        start = time.perf_counter()
        root = table.tree
        triple_range = TripleRangeDistanceSq(metric, (root, root, root))
        self._pre_process(root)
        global_ = problem.global_
        exact = self._canonical(
            state,
            triple_range,
            global_.relative_error,
            1.0 - global_.probability,
        )
        self.post_process(metric, state.results)
        self._stats = state.counters.freeze(time.perf_counter() - start)

        if op_log is not None:
            stats = self._stats
            op_log.add_metadata(
                points=table.n_entries,
                leaf_size=table.leaf_size,
                metric=metric.name,
                policy=self._summarize_policy,
                canonical_steps=stats.canonical_steps,
                base_cases=stats.base_cases,
                deterministic_prunes=stats.deterministic_prunes,
                monte_carlo_prunes=stats.monte_carlo_prunes,
                degenerate_deltas=stats.degenerate_deltas,
                tuples_resolved=stats.tuples_resolved,
                exact=exact,
            )
        return state.results

    def post_process(self, metric: Metric, results: Any) -> None:
        """Flush every postponed update down to the points and finalize them.

        A second call is a no-op because every postponed is zero afterwards.
        """

        self._require_init()
        self._post_process_node(metric, self._table.tree, results)

    # ------------------------------------------------------------------
    # traversal

    def _require_init(self) -> tuple[Problem, PointTable]:
        if self._problem is None or self._table is None:
            raise RuntimeError("TripletreeDfs.init(problem) must be called before use.")
        return self._problem, self._table

    @staticmethod
    def _statistic(node: TreeNode) -> Any:
        if node.stat is None:
            raise RuntimeError(f"{node!r} has no statistic; call reset_statistic() first.")
        return node.stat

    def _pre_process(self, root: TreeNode) -> None:
        stack = [root]
        while stack:
            node = stack.pop()
            self._statistic(node).set_zero()
            stack.extend(node.children())

    def _node_is_agreeable(self, node: TreeNode, next_node: TreeNode) -> bool:
        if not self._enforce_canonical_order:
            return True
        return node is next_node or node.end <= next_node.begin

    def _recursion_helper(
        self,
        state: _TraversalState,
        triple_range: TripleRangeDistanceSq,
        relative_error: float,
        failure_probability: float,
        level: int,
        all_leaves: bool,
    ) -> bool:
        if level == NUM_SLOTS:
            if all_leaves:
                self._base_case(state, triple_range)
                return True
            return self._canonical(state, triple_range, relative_error, failure_probability)

        current = triple_range.node(level)
        if current.is_leaf:
            if level == 0 or self._node_is_agreeable(triple_range.node(level - 1), current):
                return self._recursion_helper(
                    state,
                    triple_range,
                    relative_error,
                    failure_probability,
                    level + 1,
                    all_leaves,
                )
            return True

        exact = True
        replaced = False
        for child in current.children():
            if level == 0 or self._node_is_agreeable(triple_range.node(level - 1), child):
                replaced = True
                triple_range.replace_one_node(state.metric, child, level)
                exact = (
                    self._recursion_helper(
                        state,
                        triple_range,
                        relative_error,
                        failure_probability,
                        level + 1,
                        False,
                    )
                    and exact
                )
        # Sibling branches at the parent level must see the parent again.
        if replaced:
            triple_range.replace_one_node(state.metric, current, level)
        return exact

    def _canonical(
        self,
        state: _TraversalState,
        triple_range: TripleRangeDistanceSq,
        relative_error: float,
        failure_probability: float,
    ) -> bool:
        """Prune the node triple if its bound fits, otherwise split and recurse.

        Returns ``False`` when any part of the subproblem was resolved by a
        Monte Carlo estimate.
        """

        state.counters.canonical_steps += 1
        if self._summarize_policy != "never":
            delta = self._delta_or_none(state, triple_range, self._problem.compute_delta)
            if delta is not None and self._can_summarize(triple_range, delta):
                self._summarize(state, triple_range, delta)
                state.counters.deterministic_prunes += 1
                state.results.num_deterministic_prunes += 1
                return True

            if self._monte_carlo_eligible(state, triple_range):
                delta = self._delta_or_none(
                    state,
                    triple_range,
                    lambda metric, nodes: self._problem.monte_carlo_delta(
                        metric,
                        nodes,
                        failure_probability,
                        state.scratch,
                        state.rng,
                        self._monte_carlo_samples,
                    ),
                )
                if delta is not None and self._can_summarize(triple_range, delta):
                    self._summarize(state, triple_range, delta)
                    state.counters.monte_carlo_prunes += 1
                    state.results.num_monte_carlo_prunes += 1
                    return False

        self._push_down(triple_range)
        exact = self._recursion_helper(
            state, triple_range, relative_error, failure_probability, 0, True
        )
        self._refine_summary(triple_range)
        return exact

    def _delta_or_none(
        self,
        state: _TraversalState,
        triple_range: TripleRangeDistanceSq,
        compute: Any,
    ) -> Any:
        try:
            return compute(state.metric, triple_range)
        except DegenerateRangeError as exc:
            state.counters.degenerate_deltas += 1
            LOGGER.debug(
                "Degenerate bound for node triple %s; descending instead: %s",
                [(node.begin, node.end) for node in triple_range.nodes],
                exc,
            )
            return None

    def _monte_carlo_eligible(
        self, state: _TraversalState, triple_range: TripleRangeDistanceSq
    ) -> bool:
        if self._monte_carlo_samples <= 0 or state.scratch is None:
            return False
        spanned = triple_range.num_tuples_spanned()
        if spanned < max(self._monte_carlo_min_tuples, 1):
            return False
        sampled = sum(
            triple_range.node(slot).count for slot in triple_range.distinct_slots()
        )
        return sampled * self._monte_carlo_samples < spanned

    def _can_summarize(self, triple_range: TripleRangeDistanceSq, delta: Any) -> bool:
        global_ = self._problem.global_
        for slot in triple_range.distinct_slots():
            stat = self._statistic(triple_range.node(slot))
            if not stat.summary.can_summarize(global_, delta, slot, stat.postponed):
                return False
        return True

    def _summarize(
        self, state: _TraversalState, triple_range: TripleRangeDistanceSq, delta: Any
    ) -> None:
        for slot in triple_range.distinct_slots():
            self._statistic(triple_range.node(slot)).postponed.apply_delta(delta, slot)
        state.counters.tuples_resolved += triple_range.num_tuples_spanned()

    def _base_case(self, state: _TraversalState, triple_range: TripleRangeDistanceSq) -> None:
        problem, table = self._require_init()
        state.counters.base_cases += 1
        first, second, third = triple_range.nodes
        enumerate_triples = (
            enumerate_triples_numba if self._use_numba else enumerate_canonical_triples
        )
        positions = enumerate_triples(
            first.begin,
            first.end,
            second.begin,
            second.end,
            third.begin,
            third.end,
            first is second,
            second is third,
        )
        num_triples = int(positions[0].shape[0])
        if num_triples:
            distance_sq = TripleDistanceSq.from_positions(state.metric, table, *positions)
            contributions = problem.global_.apply_contribution(distance_sq)
            state.results.apply_contributions(distance_sq.indices, contributions)
        state.counters.tuples_resolved += num_triples

        for slot in triple_range.distinct_slots():
            node = triple_range.node(slot)
            stat = self._statistic(node)
            stat.summary.start_reaccumulate()
            stat.postponed.pruned += triple_range.num_tuples(slot)
            indices = table.node_indices(node)
            state.results.apply_postponed(indices, stat.postponed)
            stat.summary.accumulate(state.results, indices)
            stat.postponed.set_zero()

    def _push_down(self, triple_range: TripleRangeDistanceSq) -> None:
        for slot in triple_range.distinct_slots():
            node = triple_range.node(slot)
            if node.is_leaf:
                continue
            stat = self._statistic(node)
            for child in node.children():
                self._statistic(child).postponed.apply_postponed(stat.postponed)
            stat.postponed.set_zero()

    def _refine_summary(self, triple_range: TripleRangeDistanceSq) -> None:
        for slot in triple_range.distinct_slots():
            node = triple_range.node(slot)
            if node.is_leaf:
                continue
            summary = self._statistic(node).summary
            summary.start_reaccumulate()
            for child in node.children():
                child_stat = self._statistic(child)
                summary.accumulate_child(child_stat.summary, child_stat.postponed)

    def _post_process_node(self, metric: Metric, node: TreeNode, results: Any) -> None:
        problem, table = self._require_init()
        stat = self._statistic(node)
        if node.is_leaf:
            indices = table.node_indices(node)
            results.apply_postponed(indices, stat.postponed)
            results.post_process(metric, indices, problem.global_)
            stat.postponed.set_zero()
            return
        for child in node.children():
            self._statistic(child).postponed.apply_postponed(stat.postponed)
        stat.postponed.set_zero()
        for child in node.children():
            self._post_process_node(metric, child, results)


__all__ = ["TraversalStats", "TripletreeDfs"]
