"""Public ergonomic façade for tripletreex."""

from .simulator import NbodySimulation, NbodySimulator

__all__ = [
    "NbodySimulation",
    "NbodySimulator",
]
