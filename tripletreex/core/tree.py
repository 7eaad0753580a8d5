from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Tuple

import numpy as np

from tripletreex import config as cx_config
from tripletreex.core.interval import Range
from tripletreex.core.metrics import Metric


@dataclass(frozen=True)
class HRectBound:
    """Axis-aligned bounding box of the points owned by a tree node."""

    lo: np.ndarray
    hi: np.ndarray

    @classmethod
    def from_points(cls, points: np.ndarray) -> "HRectBound":
        if points.shape[0] == 0:
            raise ValueError("Cannot bound an empty point set.")
        return cls(lo=points.min(axis=0), hi=points.max(axis=0))

    @property
    def widths(self) -> np.ndarray:
        return self.hi - self.lo

    def range_distance_sq(self, other: "HRectBound", metric: Metric) -> Range:
        lo, hi = metric.range_distance_sq(self, other)
        return Range(lo, hi)


class TreeNode:
    """Binary space-partitioning node over ``[begin, end)`` of a point table.

    Nodes are immutable apart from ``stat``, which the traversal engine owns
    for the duration of a computation.
    """

    __slots__ = ("begin", "end", "bound", "left", "right", "stat")

    def __init__(
        self,
        begin: int,
        end: int,
        bound: HRectBound,
        left: "TreeNode | None" = None,
        right: "TreeNode | None" = None,
    ) -> None:
        if (left is None) != (right is None):
            raise ValueError("A tree node needs either both children or none.")
        self.begin = begin
        self.end = end
        self.bound = bound
        self.left = left
        self.right = right
        self.stat: Any = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None

    @property
    def count(self) -> int:
        return self.end - self.begin

    def children(self) -> Tuple["TreeNode", ...]:
        if self.left is None or self.right is None:
            return ()
        return (self.left, self.right)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        kind = "leaf" if self.is_leaf else "internal"
        return f"TreeNode({kind}, begin={self.begin}, end={self.end})"


@dataclass(frozen=True)
class PointTable:
    """Points permuted into tree order together with the tree built on them.

    ``indices[p]`` is the caller's original id of the point stored at
    permuted position ``p``; results are always reported by original id.
    """

    points: np.ndarray
    indices: np.ndarray
    tree: TreeNode
    leaf_size: int

    @property
    def n_entries(self) -> int:
        return int(self.points.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.points.shape[1])

    def node_points(self, node: TreeNode) -> np.ndarray:
        return self.points[node.begin : node.end]

    def node_indices(self, node: TreeNode) -> np.ndarray:
        return self.indices[node.begin : node.end]

    def node_iterator(self, node: TreeNode) -> Iterator[Tuple[np.ndarray, int]]:
        """Yield ``(point, original_index)`` pairs of ``node`` in index order."""

        for position in range(node.begin, node.end):
            yield self.points[position], int(self.indices[position])

    def nodes(self) -> Iterator[TreeNode]:
        """Pre-order walk over every node of the tree."""

        stack = [self.tree]
        while stack:
            node = stack.pop()
            yield node
            if not node.is_leaf:
                stack.append(node.right)
                stack.append(node.left)

    def leaves(self) -> Iterator[TreeNode]:
        return (node for node in self.nodes() if node.is_leaf)


def _split_node(
    points: np.ndarray,
    order: np.ndarray,
    begin: int,
    end: int,
    leaf_size: int,
) -> TreeNode:
    bound = HRectBound.from_points(points[order[begin:end]])
    count = end - begin
    widths = bound.widths
    if count <= leaf_size:
        return TreeNode(begin, end, bound)

    if np.any(widths > 0.0):
        dim = int(np.argmax(widths))
        segment = order[begin:end]
        # Median split along the widest dimension; stable so ties keep input order.
        order[begin:end] = segment[np.argsort(points[segment, dim], kind="stable")]
    # Coincident points keep their order and are halved by position.
    mid = begin + count // 2
    left = _split_node(points, order, begin, mid, leaf_size)
    right = _split_node(points, order, mid, end, leaf_size)
    return TreeNode(begin, end, bound, left=left, right=right)


def build_table(points: Any, *, leaf_size: int | None = None) -> PointTable:
    """Build a median-split kd-tree over ``points`` (shape ``(n, d)``)."""

    if leaf_size is None:
        leaf_size = cx_config.runtime_config().leaf_size
    if leaf_size <= 0:
        raise ValueError("leaf_size must be positive.")

    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2:
        raise ValueError("Points must be a 2-D array of shape (n, d).")
    if arr.shape[0] == 0:
        raise ValueError("Cannot build a tree over an empty point set.")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Points must be finite.")

    order = np.arange(arr.shape[0], dtype=np.int64)
    root = _split_node(arr, order, 0, arr.shape[0], int(leaf_size))
    return PointTable(
        points=np.ascontiguousarray(arr[order]),
        indices=order,
        tree=root,
        leaf_size=int(leaf_size),
    )


__all__ = ["HRectBound", "PointTable", "TreeNode", "build_table"]
