"""
Monte Carlo outcome simulation.

Holds an allocation fixed and re-evaluates the outcome model under
metrics drawn from the prior ranges.  The result is an empirical
outcome distribution (p10/p50/p90) and, for each channel, an interval
on its share of total conversions.

Share intervals use the fixed-split reading: the allocation is never
re-optimised per trial; what varies is how much of the outcome each
channel delivers.  Trials are vectorised, one row per trial, and are
independent of one another.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from loguru import logger

from core.contracts import CHANNELS, Allocation, Assumptions, ChannelPriors
from core.exceptions import InvalidInputError
from models.outcome import (
    EPSILON,
    as_shares,
    check_budget,
    conversions_by_channel,
    objective_from_conversions,
)


MIN_RUNS = 100
MAX_RUNS = 5000
DISTRIBUTIONS = ("uniform", "triangular")


def nearest_rank(sorted_values: np.ndarray, q: float) -> float:
    """Percentile ``q`` of sorted values at index ``floor(q * (n - 1))``."""
    idx = int(np.floor(q * (len(sorted_values) - 1)))
    return float(sorted_values[idx])


def check_runs(runs: int) -> int:
    if isinstance(runs, bool) or int(runs) != runs or not MIN_RUNS <= runs <= MAX_RUNS:
        raise InvalidInputError(
            f"runs must be an integer in [{MIN_RUNS}, {MAX_RUNS}], got {runs}",
            field="runs",
        )
    return int(runs)


@dataclass
class SimulationResult:
    """Empirical outcome distribution for one allocation."""

    p10: float
    p50: float
    p90: float
    mean: float
    std: float
    runs: int
    share_intervals: dict[str, tuple[float, float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "p10": self.p10,
            "p50": self.p50,
            "p90": self.p90,
            "mean": self.mean,
            "std": self.std,
            "runs": self.runs,
            "share_intervals": {ch: list(iv) for ch, iv in self.share_intervals.items()},
        }


class MonteCarloSimulator:
    """
    Sample priors and score a fixed allocation.

    Example:
        >>> sim = MonteCarloSimulator(runs=800, seed=42)
        >>> result = sim.simulate(10_000, allocation, priors, assumptions)
        >>> result.p10 <= result.p50 <= result.p90
        True
    """

    def __init__(self, runs: int = 800, distribution: str = "uniform", seed: int | None = None):
        """
        Args:
            runs:         Default number of trials, in [100, 5000].
            distribution: ``uniform`` or ``triangular`` (mode at the midpoint).
            seed:         Seed for the random generator; None for fresh entropy.
        """
        if distribution not in DISTRIBUTIONS:
            raise InvalidInputError(
                f"Unknown distribution '{distribution}'. Choose from {DISTRIBUTIONS}",
                field="distribution",
            )
        self.runs = check_runs(runs)
        self.distribution = distribution
        self.seed = seed

    def _draw(self, rng: np.random.Generator, lo: np.ndarray, hi: np.ndarray, runs: int) -> np.ndarray:
        size = (runs, len(lo))
        if self.distribution == "triangular":
            # numpy's triangular rejects left == right
            width = hi - lo
            u = rng.triangular(0.0, 0.5, 1.0, size=size)
            return lo + u * width
        return rng.uniform(lo, hi, size=size)

    def sample_metrics(self, priors: ChannelPriors, runs: int, rng: np.random.Generator) -> dict[str, np.ndarray]:
        """Draw ``(runs, channels)`` arrays of cpm, ctr and cvr."""
        return {metric: self._draw(rng, *priors.bounds(metric), runs) for metric in ("cpm", "ctr", "cvr")}

    def simulate(
        self,
        budget: float,
        allocation: Allocation | dict | np.ndarray,
        priors: ChannelPriors,
        assumptions: Assumptions,
        runs: int | None = None,
    ) -> SimulationResult:
        """
        Run the simulation.

        Args:
            budget:      Total budget (> 0).
            allocation:  Fixed split to evaluate.
            priors:      Channel priors; metrics are drawn within each range.
            assumptions: Goal and goal parameters.
            runs:        Override for the number of trials.

        Returns:
            SimulationResult with nearest-rank percentiles.
        """
        budget = check_budget(budget)
        runs = self.runs if runs is None else check_runs(runs)
        shares = as_shares(allocation)
        rng = np.random.default_rng(self.seed)

        metrics = self.sample_metrics(priors, runs, rng)
        per_channel = conversions_by_channel(budget, shares, metrics["cpm"], metrics["ctr"], metrics["cvr"])
        total = per_channel.sum(axis=1)
        outcomes = np.asarray(objective_from_conversions(total, budget, assumptions), dtype=float)

        ordered = np.sort(outcomes)
        result = SimulationResult(
            p10=nearest_rank(ordered, 0.10),
            p50=nearest_rank(ordered, 0.50),
            p90=nearest_rank(ordered, 0.90),
            mean=float(outcomes.mean()),
            std=float(outcomes.std()),
            runs=runs,
            share_intervals=self._share_intervals(per_channel, total),
        )

        logger.info(
            f"Monte Carlo ({runs} runs, {self.distribution}): "
            f"p10={result.p10:.4f} p50={result.p50:.4f} p90={result.p90:.4f}"
        )
        return result

    @staticmethod
    def _share_intervals(per_channel: np.ndarray, total: np.ndarray) -> dict[str, tuple[float, float]]:
        """p10/p90 of each channel's share of conversions across trials."""
        converting = total > EPSILON
        if not np.any(converting):
            logger.warning("No trial produced conversions; share intervals are all zero")
            return {ch.value: (0.0, 0.0) for ch in CHANNELS}

        shares = per_channel[converting] / total[converting][:, None]
        intervals = {}
        for i, ch in enumerate(CHANNELS):
            ordered = np.sort(shares[:, i])
            intervals[ch.value] = (nearest_rank(ordered, 0.10), nearest_rank(ordered, 0.90))
        return intervals


def simulate(
    budget: float,
    allocation: Allocation | dict | np.ndarray,
    priors: ChannelPriors,
    assumptions: Assumptions,
    runs: int = 800,
    seed: int | None = None,
) -> SimulationResult:
    """Convenience wrapper around ``MonteCarloSimulator``."""
    return MonteCarloSimulator(runs=runs, seed=seed).simulate(budget, allocation, priors, assumptions)
