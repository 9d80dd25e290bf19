"""
Core framework module for mixplan.

Provides the canonical data contracts and exception types that every
optimisation, simulation and validation component builds on.
"""

from core.contracts import (
    ALLOCATION_TOLERANCE,
    CHANNELS,
    AlgorithmResult,
    Allocation,
    Assumptions,
    BenchmarkAnalysis,
    Channel,
    ChannelPrior,
    ChannelPriors,
    ConsensusMetrics,
    Goal,
    Severity,
    ValidationWarning,
)
from core.exceptions import (
    MixPlanError,
    InvalidInputError,
    InfeasibleConstraintsError,
    InvalidAssumptionsError,
    EmptyInputError,
)

__all__ = [
    "ALLOCATION_TOLERANCE",
    "CHANNELS",
    "AlgorithmResult",
    "Allocation",
    "Assumptions",
    "BenchmarkAnalysis",
    "Channel",
    "ChannelPrior",
    "ChannelPriors",
    "ConsensusMetrics",
    "Goal",
    "Severity",
    "ValidationWarning",
    "MixPlanError",
    "InvalidInputError",
    "InfeasibleConstraintsError",
    "InvalidAssumptionsError",
    "EmptyInputError",
]
