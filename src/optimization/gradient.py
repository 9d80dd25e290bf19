"""
Continuous allocation via constrained gradient optimisation.

Solves the same planning problem as the grid allocator, but over the
continuous simplex, using scipy's SLSQP with box bounds from
``min_pct``/``max_pct`` and the equality constraint ``sum(x) = 1``.
The objective is the deterministic outcome model, rescaled by its value
at the starting point so the solver's tolerances are budget-independent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from loguru import logger
from scipy.optimize import minimize

from core.contracts import AlgorithmResult, Allocation, Assumptions, ChannelPriors
from models.outcome import check_budget, conversions_by_channel, is_better, objective_from_conversions
from optimization.constraints import (
    BOUND_TOLERANCE,
    check_feasible,
    feasible_start,
    project_to_bounds,
    resolve_bounds,
)


@dataclass
class GradientResult:
    """Outcome of a gradient run."""

    allocation: Allocation
    performance: float
    iterations: int
    converged: bool
    gradient_norm: float
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allocation": self.allocation.to_dict(),
            "performance": self.performance,
            "iterations": self.iterations,
            "converged": self.converged,
            "gradient_norm": self.gradient_norm,
            "message": self.message,
        }


class GradientAllocator:
    """
    SLSQP allocator on the bounded simplex.

    Confidence in the result starts at 0.5 and grows with convergence,
    a small stationarity residual, and agreement with the Monte Carlo
    median of the baseline plan.
    """

    name = "Gradient Descent"

    def __init__(
        self,
        max_iterations: int = 1000,
        tolerance: float = 1e-9,
        gradient_tolerance: float = 1e-4,
        competitive_margin: float = 0.05,
    ):
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.gradient_tolerance = gradient_tolerance
        self.competitive_margin = competitive_margin

    def optimize(
        self,
        budget: float,
        priors: ChannelPriors,
        assumptions: Assumptions,
    ) -> GradientResult:
        """Run SLSQP from the feasible point nearest an equal split."""
        budget = check_budget(budget)
        lo, hi = resolve_bounds(assumptions)
        check_feasible(lo, hi)

        cpm = priors.midpoints("cpm")
        ctr = priors.midpoints("ctr")
        cvr = priors.midpoints("cvr")
        goal = assumptions.goal
        sign = 1.0 if goal.minimize else -1.0

        def outcome(x: np.ndarray) -> float:
            conv = conversions_by_channel(budget, x, cpm, ctr, cvr).sum()
            return float(objective_from_conversions(conv, budget, assumptions))

        x0 = feasible_start(lo, hi)
        start_value = outcome(x0)
        scale = abs(start_value) if start_value != 0 else 1.0

        def scaled(x: np.ndarray) -> float:
            return sign * outcome(np.clip(x, 0.0, None)) / scale

        result = minimize(
            scaled,
            x0,
            method="SLSQP",
            bounds=list(zip(lo, hi)),
            constraints=[{"type": "eq", "fun": lambda x: np.sum(x) - 1.0}],
            options={"maxiter": self.max_iterations, "ftol": self.tolerance},
        )

        shares = project_to_bounds(result.x, lo, hi)
        performance = outcome(shares)

        # never return something worse than the starting point
        if is_better(goal, start_value, performance):
            logger.warning(f"SLSQP ended worse than its start ({result.message}); keeping start point")
            shares, performance = x0, start_value

        gradient_norm = self._stationarity(scaled, shares, lo, hi)
        iterations = int(getattr(result, "nit", 0))

        logger.info(
            f"Gradient allocator: {goal.value}={performance:.4f} after {iterations} iterations "
            f"(converged={bool(result.success)}, residual={gradient_norm:.2e})"
        )

        return GradientResult(
            allocation=Allocation.from_array(shares),
            performance=performance,
            iterations=iterations,
            converged=bool(result.success),
            gradient_norm=gradient_norm,
            message=str(result.message),
        )

    @staticmethod
    def _stationarity(fun, x: np.ndarray, lo: np.ndarray, hi: np.ndarray, h: float = 1e-6) -> float:
        """
        KKT residual of ``fun`` at ``x``.

        Central-difference gradient restricted to channels strictly
        inside their bounds; at an optimum those components are equal, so
        the residual is their spread around the mean.
        """
        grad = np.zeros_like(x)
        for i in range(len(x)):
            step = np.zeros_like(x)
            step[i] = h
            grad[i] = (fun(x + step) - fun(x - step)) / (2 * h)

        free = (x > lo + BOUND_TOLERANCE) & (x < hi - BOUND_TOLERANCE)
        if free.sum() < 2:
            return 0.0
        g = grad[free]
        return float(np.linalg.norm(g - g.mean()))

    def compare_with_monte_carlo(self, result: GradientResult, p50: float) -> dict[str, Any]:
        """Relative gap between this result and a Monte Carlo median."""
        difference = abs(result.performance - p50)
        relative = result.performance / p50 if p50 else float("nan")
        competitive = bool(p50) and difference / abs(p50) < self.competitive_margin
        return {
            "performance_difference": difference,
            "relative_performance": relative,
            "is_competitive": competitive,
        }

    def to_algorithm_result(
        self,
        result: GradientResult,
        monte_carlo_p50: float | None = None,
    ) -> AlgorithmResult:
        confidence = 0.5
        if result.converged:
            confidence += 0.3
        if result.gradient_norm < self.gradient_tolerance:
            confidence += 0.1
        if monte_carlo_p50 is not None and self.compare_with_monte_carlo(result, monte_carlo_p50)["is_competitive"]:
            confidence += 0.1

        return AlgorithmResult(
            name=self.name,
            allocation=result.allocation,
            confidence=min(1.0, confidence),
            performance=result.performance,
        )
