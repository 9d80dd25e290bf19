"""
Deterministic outcome model.

Maps a budget split onto expected conversions using the funnel

    impressions = spend / cpm * 1000
    clicks      = impressions * ctr
    conversions = clicks * cvr

and turns total conversions into the planning objective (demos,
revenue or cost per acquisition).  The model is linear in spend: there
is no saturation, so doubling the budget doubles demos and revenue.

All functions broadcast over numpy arrays so the same code scores a
single allocation, a grid of candidates, or a batch of Monte Carlo
samples.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

import numpy as np
import pandas as pd

from core.contracts import CHANNELS, Allocation, Assumptions, ChannelPriors, Goal
from core.exceptions import InvalidAssumptionsError, InvalidInputError


# Conversions at or below this are treated as zero for the CAC goal.
EPSILON = 1e-9


def as_shares(allocation: Allocation | Mapping[Any, float] | np.ndarray) -> np.ndarray:
    """Return allocation shares as an array in ``CHANNELS`` order."""
    if isinstance(allocation, Allocation):
        return allocation.as_array()
    if isinstance(allocation, Mapping):
        values = {getattr(k, "value", k): float(v) for k, v in allocation.items()}
        return np.array([values.get(ch.value, 0.0) for ch in CHANNELS])
    return np.asarray(allocation, dtype=float)


def check_budget(budget: float) -> float:
    budget = float(budget)
    if not math.isfinite(budget) or budget <= 0:
        raise InvalidInputError(f"Budget must be a positive finite number, got {budget}", field="budget")
    return budget


def conversions_by_channel(
    budget: float,
    shares: np.ndarray,
    cpm: np.ndarray,
    ctr: np.ndarray,
    cvr: np.ndarray,
) -> np.ndarray:
    """Per-channel conversions. Inputs broadcast; the last axis is the channel."""
    spend = budget * shares
    impressions = spend / cpm * 1000.0
    clicks = impressions * ctr
    return clicks * cvr


def deterministic_conversions(
    budget: float,
    allocation: Allocation | Mapping[Any, float] | np.ndarray,
    priors: ChannelPriors,
) -> float:
    """Total conversions using the midpoint of every prior range."""
    per_channel = conversions_by_channel(
        budget,
        as_shares(allocation),
        priors.midpoints("cpm"),
        priors.midpoints("ctr"),
        priors.midpoints("cvr"),
    )
    return float(per_channel.sum(axis=-1))


def conversions_from_samples(
    budget: float,
    shares: np.ndarray,
    cpm: np.ndarray,
    ctr: np.ndarray,
    cvr: np.ndarray,
) -> np.ndarray:
    """Total conversions over the channel axis; broadcasts over trials or candidate splits."""
    return conversions_by_channel(budget, shares, cpm, ctr, cvr).sum(axis=-1)


def degenerate_cac(budget: float) -> float:
    """Finite 'infinite cost' sentinel returned when nothing converts."""
    return budget / EPSILON


def objective_from_conversions(
    conversions: float | np.ndarray,
    budget: float,
    assumptions: Assumptions,
) -> float | np.ndarray:
    """Turn total conversions into the goal's outcome value."""
    goal = assumptions.goal

    if goal is Goal.REVENUE:
        if assumptions.avg_deal_size is None:
            raise InvalidAssumptionsError(
                "avg_deal_size is required when the goal is revenue", goal=goal.value,
            )
        return conversions * assumptions.avg_deal_size

    if goal is Goal.CAC:
        # budget / max(conv, eps) equals the degenerate sentinel once conv <= eps
        result = budget / np.maximum(conversions, EPSILON)
        return float(result) if np.ndim(result) == 0 else result

    return conversions


def evaluate(
    budget: float,
    allocation: Allocation | Mapping[Any, float] | np.ndarray,
    priors: ChannelPriors,
    assumptions: Assumptions,
) -> float:
    """
    Deterministic outcome of an allocation.

    Args:
        budget:      Total budget (> 0).
        allocation:  Channel shares summing to 1.
        priors:      Channel priors; range midpoints are used.
        assumptions: Goal and goal-specific parameters.

    Returns:
        Expected demos, revenue, or cost per acquisition.
    """
    budget = check_budget(budget)
    conversions = deterministic_conversions(budget, allocation, priors)
    return float(objective_from_conversions(conversions, budget, assumptions))


def is_better(goal: Goal, candidate: float, incumbent: float, rel_tol: float = 1e-12) -> bool:
    """
    Strict improvement test in the goal's direction.

    A relative tolerance keeps floating point noise from breaking ties,
    so equal outcomes keep the first candidate seen.
    """
    margin = rel_tol * max(abs(candidate), abs(incumbent))
    if goal.minimize:
        return candidate < incumbent - margin
    return candidate > incumbent + margin


def performance_scores(priors: ChannelPriors) -> np.ndarray:
    """Conversions per unit of CPM at the midpoints: ``ctr * cvr / cpm``."""
    cpm = np.maximum(priors.midpoints("cpm"), 0.01)
    return priors.midpoints("ctr") * priors.midpoints("cvr") / cpm


def performance_allocation(priors: ChannelPriors) -> np.ndarray:
    """Shares proportional to performance scores; uniform when all are zero."""
    scores = performance_scores(priors)
    total = scores.sum()
    if total <= 0:
        return np.full(len(CHANNELS), 1.0 / len(CHANNELS))
    return scores / total


def outcome_breakdown(
    budget: float,
    allocation: Allocation | Mapping[Any, float] | np.ndarray,
    priors: ChannelPriors,
) -> pd.DataFrame:
    """Per-channel funnel at the prior midpoints."""
    budget = check_budget(budget)
    shares = as_shares(allocation)
    cpm = priors.midpoints("cpm")
    ctr = priors.midpoints("ctr")
    cvr = priors.midpoints("cvr")

    spend = budget * shares
    impressions = spend / cpm * 1000.0
    clicks = impressions * ctr
    conversions = clicks * cvr

    return pd.DataFrame({
        "channel": [ch.value for ch in CHANNELS],
        "share": shares,
        "spend": spend,
        "impressions": impressions,
        "clicks": clicks,
        "conversions": conversions,
        "cost_per_conversion": np.where(conversions > EPSILON, spend / np.maximum(conversions, EPSILON), np.nan),
    })
