"""
Monte Carlo simulation of plan outcomes under prior uncertainty.
"""

from simulation.monte_carlo import (
    MAX_RUNS,
    MIN_RUNS,
    MonteCarloSimulator,
    SimulationResult,
    nearest_rank,
    simulate,
)

__all__ = [
    "MAX_RUNS",
    "MIN_RUNS",
    "MonteCarloSimulator",
    "SimulationResult",
    "nearest_rank",
    "simulate",
]
