from __future__ import annotations

from math import comb
from typing import List, Sequence, Tuple

import numpy as np

from tripletreex.core.interval import Range
from tripletreex.core.metrics import Metric
from tripletreex.core.tree import PointTable, TreeNode

NUM_SLOTS = 3
_PAIRS: Tuple[Tuple[int, int], ...] = ((0, 1), (0, 2), (1, 2))


def _check_slot(slot: int) -> None:
    if not 0 <= slot < NUM_SLOTS:
        raise IndexError(f"Slot index {slot} out of range [0, {NUM_SLOTS}).")


def _pair_index(i: int, j: int) -> int:
    _check_slot(i)
    _check_slot(j)
    if i == j:
        raise ValueError("A pairwise distance needs two different slots.")
    key = (i, j) if i < j else (j, i)
    return _PAIRS.index(key)


def _multiplicities(nodes: Sequence[TreeNode]) -> List[Tuple[TreeNode, int]]:
    groups: List[Tuple[TreeNode, int]] = []
    for node in nodes:
        for position, (seen, count) in enumerate(groups):
            if seen is node:
                groups[position] = (seen, count + 1)
                break
        else:
            groups.append((node, 1))
    return groups


class TripleDistanceSq:
    """Pairwise squared distances for a batch of concrete point triples.

    Row ``k`` of the batch is the triple ``(positions[0][k], positions[1][k],
    positions[2][k])`` of permuted table positions; ``indices`` holds the
    matching original point ids.
    """

    __slots__ = ("positions", "indices", "_distance_sq")

    def __init__(
        self,
        positions: Tuple[np.ndarray, np.ndarray, np.ndarray],
        indices: Tuple[np.ndarray, np.ndarray, np.ndarray],
        distance_sq: np.ndarray,
    ) -> None:
        if len(positions) != NUM_SLOTS or len(indices) != NUM_SLOTS:
            raise ValueError("A triple needs exactly three slots.")
        if distance_sq.shape[0] != len(_PAIRS):
            raise ValueError("distance_sq must hold one row per slot pair.")
        self.positions = positions
        self.indices = indices
        self._distance_sq = distance_sq

    @classmethod
    def from_positions(
        cls,
        metric: Metric,
        table: PointTable,
        first: np.ndarray,
        second: np.ndarray,
        third: np.ndarray,
    ) -> "TripleDistanceSq":
        positions = (
            np.asarray(first, dtype=np.int64),
            np.asarray(second, dtype=np.int64),
            np.asarray(third, dtype=np.int64),
        )
        size = positions[0].shape[0]
        distance_sq = np.empty((len(_PAIRS), size), dtype=np.float64)
        for pair, (i, j) in enumerate(_PAIRS):
            distance_sq[pair] = metric.distance_sq(
                table.points[positions[i]], table.points[positions[j]]
            )
        indices = tuple(table.indices[slot_positions] for slot_positions in positions)
        return cls(positions, indices, distance_sq)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return int(self._distance_sq.shape[1])

    def distance_sq(self, i: int, j: int) -> np.ndarray:
        return self._distance_sq[_pair_index(i, j)]

    def product_distance_sq(self) -> np.ndarray:
        return np.prod(self._distance_sq, axis=0)

    def min_distance_sq(self) -> np.ndarray:
        return np.min(self._distance_sq, axis=0)


class TripleRangeDistanceSq:
    """Three tree nodes (one per slot) with cached pairwise distance bounds.

    The node references are not necessarily distinct. The structure is
    mutated in place by the traversal; ``replace_one_node`` refreshes only
    the two pairwise bounds touching the replaced slot.
    """

    __slots__ = ("_nodes", "_range_sq")

    def __init__(self, metric: Metric, nodes: Sequence[TreeNode]) -> None:
        if len(nodes) != NUM_SLOTS:
            raise ValueError(f"Expected {NUM_SLOTS} nodes, got {len(nodes)}.")
        self._nodes: List[TreeNode] = list(nodes)
        self._range_sq: List[Range] = [
            self._nodes[i].bound.range_distance_sq(self._nodes[j].bound, metric)
            for i, j in _PAIRS
        ]

    def node(self, slot: int) -> TreeNode:
        _check_slot(slot)
        return self._nodes[slot]

    @property
    def nodes(self) -> Tuple[TreeNode, TreeNode, TreeNode]:
        return tuple(self._nodes)  # type: ignore[return-value]

    def range_distance_sq(self, i: int, j: int) -> Range:
        return self._range_sq[_pair_index(i, j)]

    def replace_one_node(self, metric: Metric, new_node: TreeNode, slot: int) -> None:
        _check_slot(slot)
        self._nodes[slot] = new_node
        for pair, (i, j) in enumerate(_PAIRS):
            if slot == i or slot == j:
                self._range_sq[pair] = self._nodes[i].bound.range_distance_sq(
                    self._nodes[j].bound, metric
                )

    def multiplicities(self) -> List[Tuple[TreeNode, int]]:
        """Distinct nodes (by identity, in slot order) with their slot counts."""

        return _multiplicities(self._nodes)

    def distinct_slots(self) -> Tuple[int, ...]:
        """Slots whose node differs from the node in the previous slot."""

        return tuple(
            slot
            for slot in range(NUM_SLOTS)
            if slot == 0 or self._nodes[slot] is not self._nodes[slot - 1]
        )

    def num_tuples(self, slot: int) -> int:
        """Number of spanned point triples containing a fixed point of ``slot``."""

        owner = self.node(slot)
        total = 1
        for node, count in self.multiplicities():
            if node is owner:
                total *= comb(node.count - 1, count - 1)
            else:
                total *= comb(node.count, count)
        return total

    def num_tuples_spanned(self) -> int:
        """Number of unordered point triples spanned by the three nodes."""

        total = 1
        for node, count in self.multiplicities():
            total *= comb(node.count, count)
        return total


__all__ = ["NUM_SLOTS", "TripleDistanceSq", "TripleRangeDistanceSq"]
