"""
Outcome model for mixplan.

Scores a budget split against channel priors for the demos, revenue
and CAC goals.
"""

from models.outcome import (
    EPSILON,
    as_shares,
    check_budget,
    conversions_by_channel,
    conversions_from_samples,
    degenerate_cac,
    deterministic_conversions,
    evaluate,
    is_better,
    objective_from_conversions,
    outcome_breakdown,
    performance_allocation,
    performance_scores,
)

__all__ = [
    "EPSILON",
    "as_shares",
    "check_budget",
    "conversions_by_channel",
    "conversions_from_samples",
    "degenerate_cac",
    "deterministic_conversions",
    "evaluate",
    "is_better",
    "objective_from_conversions",
    "outcome_breakdown",
    "performance_allocation",
    "performance_scores",
]
