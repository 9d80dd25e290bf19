"""
Bound handling shared by every allocation strategy.

Per-channel ``[min_pct, max_pct]`` bounds intersect the probability
simplex in a (possibly empty) polytope.  These helpers resolve the
bounds from assumptions, fail fast when the polytope is empty, and
move arbitrary share vectors onto it.
"""

from __future__ import annotations

import numpy as np
from loguru import logger

from core.contracts import CHANNELS, Assumptions
from core.exceptions import InfeasibleConstraintsError


BOUND_TOLERANCE = 1e-9


def resolve_bounds(assumptions: Assumptions) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(lo, hi)`` share bounds in ``CHANNELS`` order."""
    lo = np.array([assumptions.min_for(ch) for ch in CHANNELS], dtype=float)
    hi = np.array([assumptions.max_for(ch) for ch in CHANNELS], dtype=float)
    return lo, hi


def check_feasible(lo: np.ndarray, hi: np.ndarray) -> None:
    """Raise ``InfeasibleConstraintsError`` if no allocation fits the bounds."""
    for channel, min_pct, max_pct in zip(CHANNELS, lo, hi):
        if min_pct > max_pct + BOUND_TOLERANCE:
            raise InfeasibleConstraintsError(
                f"min_pct for {channel.value} ({min_pct:.1%}) exceeds its max_pct ({max_pct:.1%})",
                reason="min_exceeds_max",
            )

    if lo.sum() > 1 + BOUND_TOLERANCE:
        raise InfeasibleConstraintsError(
            f"Minimum shares sum to {lo.sum():.1%}, more than the whole budget",
            reason="min_sum_exceeds_one",
        )

    if hi.sum() < 1 - BOUND_TOLERANCE:
        raise InfeasibleConstraintsError(
            f"Maximum shares sum to {hi.sum():.1%}, less than the whole budget",
            reason="max_sum_below_one",
        )


def respects_bounds(
    shares: np.ndarray,
    lo: np.ndarray,
    hi: np.ndarray,
    tol: float = BOUND_TOLERANCE,
) -> np.ndarray | bool:
    """Element-wise bound check along the last (channel) axis."""
    return np.all((shares >= lo - tol) & (shares <= hi + tol), axis=-1)


def project_to_bounds(
    shares: np.ndarray,
    lo: np.ndarray,
    hi: np.ndarray,
    iterations: int = 100,
) -> np.ndarray:
    """
    Euclidean projection onto ``{x : lo <= x <= hi, sum(x) = 1}``.

    The projection is ``clip(x - tau, lo, hi)`` for the scalar ``tau``
    that makes the result sum to 1; ``tau`` is found by bisection since
    the clipped sum is monotone in it.  Non-finite inputs count as 0.
    Bounds must already be feasible.
    """
    x = np.asarray(shares, dtype=float)
    x = np.where(np.isfinite(x), x, 0.0)

    tau_low = float(np.min(x - hi))   # clip -> hi, sum >= 1
    tau_high = float(np.max(x - lo))  # clip -> lo, sum <= 1

    for _ in range(iterations):
        tau = (tau_low + tau_high) / 2
        if np.clip(x - tau, lo, hi).sum() > 1:
            tau_low = tau
        else:
            tau_high = tau

    return np.clip(x - (tau_low + tau_high) / 2, lo, hi)


def feasible_start(lo: np.ndarray, hi: np.ndarray) -> np.ndarray:
    """The feasible point closest to an equal split."""
    return project_to_bounds(np.full(len(lo), 1.0 / len(lo)), lo, hi)


def sample_feasible(
    rng: np.random.Generator,
    lo: np.ndarray,
    hi: np.ndarray,
    n: int,
) -> np.ndarray:
    """
    Draw ``n`` random feasible allocations.

    Slack above the minimums is spread with a flat Dirichlet; draws that
    break a maximum are projected back onto the feasible set.
    """
    slack = max(0.0, 1.0 - float(lo.sum()))
    draws = lo + slack * rng.dirichlet(np.ones(len(lo)), size=n)

    violating = ~respects_bounds(draws, lo, hi)
    if np.any(violating):
        logger.debug(f"Projecting {int(violating.sum())}/{n} random draws onto bounds")
        draws[violating] = np.array([project_to_bounds(d, lo, hi) for d in draws[violating]])

    return draws
