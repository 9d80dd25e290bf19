"""
Performance-ratio heuristic.

Splits the budget in proportion to each channel's ``ctr * cvr / cpm``
at the prior midpoints, then moves the split onto the channel bounds.
Cheap, deterministic, and a useful sanity anchor for the ensemble.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from loguru import logger

from core.contracts import CHANNELS, AlgorithmResult, Allocation, Assumptions, ChannelPriors
from models.outcome import evaluate, performance_allocation, performance_scores
from optimization.constraints import check_feasible, project_to_bounds, resolve_bounds


@dataclass
class HeuristicResult:
    allocation: Allocation
    performance: float
    scores: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "allocation": self.allocation.to_dict(),
            "performance": self.performance,
            "scores": dict(self.scores),
        }


class HeuristicAllocator:
    """Allocate proportionally to channel efficiency."""

    name = "Heuristic Validation"

    def __init__(self, confidence: float = 0.7):
        self.confidence = confidence

    def allocate(
        self,
        budget: float,
        priors: ChannelPriors,
        assumptions: Assumptions,
    ) -> HeuristicResult:
        lo, hi = resolve_bounds(assumptions)
        check_feasible(lo, hi)

        shares = performance_allocation(priors)
        if assumptions.has_bounds:
            shares = project_to_bounds(shares, lo, hi)

        allocation = Allocation.from_array(shares)
        performance = evaluate(budget, allocation, priors, assumptions)
        scores = {ch.value: float(s) for ch, s in zip(CHANNELS, performance_scores(priors))}

        logger.info(f"Heuristic allocator: {assumptions.goal.value}={performance:.4f}")
        logger.debug(f"Heuristic shares: {np.round(shares, 4).tolist()}")

        return HeuristicResult(allocation=allocation, performance=performance, scores=scores)

    def to_algorithm_result(self, result: HeuristicResult) -> AlgorithmResult:
        return AlgorithmResult(
            name=self.name,
            allocation=result.allocation,
            confidence=self.confidence,
            performance=result.performance,
        )
