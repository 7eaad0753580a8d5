"""Generic multi-body traversal: triple ranges, problem contracts and the engine."""

from .monte_carlo import MeanVariancePairs, compute_quantile
from .problem import DegenerateRangeError, Problem
from .triple_distance import TripleDistanceSq, TripleRangeDistanceSq
from .tripletree_dfs import TraversalStats, TripletreeDfs

__all__ = [
    "DegenerateRangeError",
    "MeanVariancePairs",
    "Problem",
    "TraversalStats",
    "TripleDistanceSq",
    "TripleRangeDistanceSq",
    "TripletreeDfs",
    "compute_quantile",
]
