"""Three-body potential summation built on the triple-tree engine."""

from .potentials import ConstantPotential, InversePowerPotential, Potential
from .problem import (
    NbodyDelta,
    NbodyGlobal,
    NbodyPostponed,
    NbodyResult,
    NbodySimulatorProblem,
    NbodyStatistic,
    NbodySummary,
)

__all__ = [
    "ConstantPotential",
    "InversePowerPotential",
    "NbodyDelta",
    "NbodyGlobal",
    "NbodyPostponed",
    "NbodyResult",
    "NbodySimulatorProblem",
    "NbodyStatistic",
    "NbodySummary",
    "Potential",
]
