#!/usr/bin/env python
"""Quick-start guide for tripletreex library usage.

Run with: python -m tripletreex

This module intentionally avoids importing tripletreex internals to provide
a fast, clean startup for displaying help text.
"""

from __future__ import annotations

QUICKSTART = """\
================================================================================
                              TRIPLETREEX
     Error-bounded triple-tree summation over every unordered point triple
================================================================================

INSTALLATION
------------
    pip install tripletreex
    pip install "tripletreex[numba]"   # optional compiled base case

BASIC USAGE (three-body potential)
----------------------------------
    import numpy as np
    from tripletreex import NbodySimulator, InversePowerPotential

    points = np.random.randn(2000, 3)
    sim = NbodySimulator(
        points,
        InversePowerPotential(power=1.0),
        relative_error=0.1,
        leaf_size=16,
    )
    outcome = sim.compute()
    outcome.potential          # per-point estimate, input order
    outcome.stats              # prunes, base cases, tuples resolved

ENGINE LEVEL
------------
    from tripletreex import TripletreeDfs, NbodySimulatorProblem, build_table

    table = build_table(points, leaf_size=8)
    problem = NbodySimulatorProblem(table, InversePowerPotential(), relative_error=0.05)
    engine = TripletreeDfs(summarize_policy="deterministic")
    engine.init(problem)
    results = engine.compute()

MONTE CARLO SUMMARIZATION
-------------------------
    engine = TripletreeDfs(monte_carlo_samples=32, seed=0)
    problem = NbodySimulatorProblem(table, InversePowerPotential(), probability=0.9)

ENVIRONMENT
-----------
    TRIPLETREEX_LOG_LEVEL              INFO
    TRIPLETREEX_ENABLE_DIAGNOSTICS     1
    TRIPLETREEX_ENABLE_NUMBA           0
    TRIPLETREEX_METRIC                 euclidean | manhattan
    TRIPLETREEX_LEAF_SIZE              16
    TRIPLETREEX_SUMMARIZE              deterministic | never
    TRIPLETREEX_MONTE_CARLO_SAMPLES    0
    TRIPLETREEX_MONTE_CARLO_MIN_TUPLES 40
    TRIPLETREEX_SEED                   (unset)

================================================================================
"""


def main() -> None:
    """Print quick-start guide."""
    print(QUICKSTART)


if __name__ == "__main__":
    main()
