"""
Budget allocation strategies for mixplan.

The grid allocator is the baseline; gradient, Bayesian and heuristic
allocators provide independent opinions for the ensemble.  All of them
share the bound handling in ``optimization.constraints``.
"""

from optimization.bayesian import BayesianAllocator, BayesianResult
from optimization.constraints import (
    check_feasible,
    project_to_bounds,
    resolve_bounds,
    respects_bounds,
    sample_feasible,
)
from optimization.gradient import GradientAllocator, GradientResult
from optimization.grid import GridAllocator, GridSearchResult, grid_search
from optimization.heuristic import HeuristicAllocator, HeuristicResult

__all__ = [
    "BayesianAllocator",
    "BayesianResult",
    "GradientAllocator",
    "GradientResult",
    "GridAllocator",
    "GridSearchResult",
    "HeuristicAllocator",
    "HeuristicResult",
    "check_feasible",
    "grid_search",
    "project_to_bounds",
    "resolve_bounds",
    "respects_bounds",
    "sample_feasible",
]
