"""
Discrete grid allocator.

Enumerates every allocation on a regular grid over the four-channel
simplex (10-point steps by default), drops the ones outside the
per-channel bounds, scores the rest with the deterministic outcome
model and keeps the best.

The result is the best point *on the grid*, not the continuous
optimum.  This is a deliberate approximation: the grid is the stable
baseline the other strategies are compared against.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from loguru import logger

from core.contracts import CHANNELS, AlgorithmResult, Allocation, Assumptions, ChannelPriors, Goal
from core.exceptions import InfeasibleConstraintsError, InvalidInputError
from models.outcome import check_budget, conversions_by_channel, is_better, objective_from_conversions
from optimization.constraints import check_feasible, resolve_bounds, respects_bounds


@dataclass
class GridSearchResult:
    """Best grid allocation plus the runners-up."""

    best_allocation: Allocation
    best_outcome: float
    goal: Goal
    step: float
    n_candidates: int = 0
    n_feasible: int = 0
    top_candidates: pd.DataFrame = field(default_factory=pd.DataFrame)

    def to_algorithm_result(
        self,
        confidence: float = 0.8,
        performance: float | None = None,
        name: str = "Grid Search",
    ) -> AlgorithmResult:
        return AlgorithmResult(
            name=name,
            allocation=self.best_allocation,
            confidence=confidence,
            performance=self.best_outcome if performance is None else performance,
        )

    def alternatives(self) -> list[Allocation]:
        """Runner-up allocations, best first, excluding the winner."""
        rows = self.top_candidates.iloc[1:]
        return [
            Allocation.from_array(row[[ch.value for ch in CHANNELS]].to_numpy(dtype=float))
            for _, row in rows.iterrows()
        ]

    def to_dict(self) -> dict:
        return {
            "best_allocation": self.best_allocation.to_dict(),
            "best_outcome": self.best_outcome,
            "goal": self.goal.value,
            "step": self.step,
            "n_candidates": self.n_candidates,
            "n_feasible": self.n_feasible,
            "top_candidates": self.top_candidates.to_dict(orient="records"),
        }


class GridAllocator:
    """
    Exhaustive search over a discretised simplex.

    Example:
        >>> allocator = GridAllocator(step=0.1)
        >>> result = allocator.search(10_000, priors, Assumptions(goal="demos"))
        >>> result.best_allocation.google
    """

    def __init__(self, step: float = 0.1, top_k: int = 5):
        """
        Args:
            step:  Grid spacing as a fraction of the budget; must divide 1.
            top_k: Number of best candidates kept for alternatives.
        """
        if not 0 < step <= 1:
            raise InvalidInputError(f"Grid step must lie in (0, 1], got {step}", field="step")
        units = round(1 / step)
        if abs(units * step - 1) > 1e-9:
            raise InvalidInputError(f"Grid step {step} does not divide 1 evenly", field="step")

        self.step = step
        self.units = units
        self.top_k = max(1, top_k)

    def candidates(self) -> np.ndarray:
        """
        All grid allocations, shape ``(n, 4)``.

        Rows are ordered by nested loops over google, meta, tiktok, with
        linkedin taking the remainder.  Ties in the search go to the
        earliest row.
        """
        n = self.units
        rows = []
        for g in range(n + 1):
            for m in range(n + 1 - g):
                for t in range(n + 1 - g - m):
                    rows.append((g, m, t, n - g - m - t))
        return np.array(rows, dtype=float) / n

    def search(
        self,
        budget: float,
        priors: ChannelPriors,
        assumptions: Assumptions,
    ) -> GridSearchResult:
        """
        Find the best feasible grid allocation.

        Args:
            budget:      Total budget (> 0).
            priors:      Channel priors (midpoints are used).
            assumptions: Goal and optional per-channel bounds.

        Returns:
            GridSearchResult with the winning allocation.

        Raises:
            InfeasibleConstraintsError: bounds admit no grid allocation.
        """
        budget = check_budget(budget)
        lo, hi = resolve_bounds(assumptions)
        check_feasible(lo, hi)

        grid = self.candidates()
        feasible = grid[respects_bounds(grid, lo, hi)]
        if len(feasible) == 0:
            raise InfeasibleConstraintsError(
                f"No allocation on the {self.step:.0%} grid satisfies the channel bounds",
                reason="no_grid_point",
            )

        conversions = conversions_by_channel(
            budget,
            feasible,
            priors.midpoints("cpm"),
            priors.midpoints("ctr"),
            priors.midpoints("cvr"),
        ).sum(axis=1)
        outcomes = np.asarray(objective_from_conversions(conversions, budget, assumptions), dtype=float)

        goal = assumptions.goal
        best_idx = 0
        for i in range(1, len(outcomes)):
            if is_better(goal, outcomes[i], outcomes[best_idx]):
                best_idx = i

        ranked = np.argsort(outcomes if goal.minimize else -outcomes, kind="stable")
        order = [best_idx] + [int(i) for i in ranked if i != best_idx][: self.top_k - 1]
        top = pd.DataFrame(feasible[order], columns=[ch.value for ch in CHANNELS])
        top["outcome"] = outcomes[order]
        top["rank"] = np.arange(1, len(order) + 1)

        best_allocation = Allocation.from_array(feasible[best_idx])
        best_outcome = float(outcomes[best_idx])

        logger.info(
            f"Grid search ({self.step:.0%} step): {len(feasible)}/{len(grid)} candidates feasible, "
            f"best {goal.value}={best_outcome:.4f}"
        )
        logger.debug(f"Best grid allocation: {best_allocation.to_dict()}")

        return GridSearchResult(
            best_allocation=best_allocation,
            best_outcome=best_outcome,
            goal=goal,
            step=self.step,
            n_candidates=len(grid),
            n_feasible=len(feasible),
            top_candidates=top,
        )


def grid_search(
    budget: float,
    priors: ChannelPriors,
    assumptions: Assumptions,
    step: float = 0.1,
) -> GridSearchResult:
    """Convenience wrapper around ``GridAllocator(step).search``."""
    return GridAllocator(step=step).search(budget, priors, assumptions)
