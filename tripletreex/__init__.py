"""Tripletreex: error-bounded triple-tree summation over all point triples.

Quick Start
-----------
>>> import numpy as np
>>> from tripletreex import NbodySimulator, InversePowerPotential
>>>
>>> points = np.random.randn(500, 3)
>>> sim = NbodySimulator(points, InversePowerPotential(power=1.0), relative_error=0.1)
>>> potential = sim.compute().potential

Classes
-------
NbodySimulator : Build the tree, run the traversal, return per-point results.
TripletreeDfs : The traversal engine for any problem implementing ``Problem``.
NbodySimulatorProblem : Three-body potential summation problem.
"""

from importlib.metadata import version as _pkg_version

try:
    __version__ = _pkg_version("tripletreex")
except Exception:  # pragma: no cover - best effort during local development
    __version__ = "0.1.0"

from .api import NbodySimulation, NbodySimulator
from .config import RuntimeConfig, describe_runtime, reset_runtime_config_cache, runtime_config
from .core import Range, build_table, available_metrics, get_metric
from .gnp import (
    DegenerateRangeError,
    MeanVariancePairs,
    TraversalStats,
    TripleDistanceSq,
    TripleRangeDistanceSq,
    TripletreeDfs,
)
from .nbody import (
    ConstantPotential,
    InversePowerPotential,
    NbodyResult,
    NbodySimulatorProblem,
)

__all__ = [
    "ConstantPotential",
    "DegenerateRangeError",
    "InversePowerPotential",
    "MeanVariancePairs",
    "NbodyResult",
    "NbodySimulation",
    "NbodySimulator",
    "NbodySimulatorProblem",
    "Range",
    "RuntimeConfig",
    "TraversalStats",
    "TripleDistanceSq",
    "TripleRangeDistanceSq",
    "TripletreeDfs",
    "available_metrics",
    "build_table",
    "describe_runtime",
    "get_metric",
    "reset_runtime_config_cache",
    "runtime_config",
]
