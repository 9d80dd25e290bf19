"""
Bayesian allocation search.

A Gaussian-process surrogate with an RBF kernel is fitted to the
allocations evaluated so far; each iteration evaluates the candidate
with the highest expected improvement.  Candidates are random feasible
allocations plus local perturbations of the incumbent, so every point
the search visits respects the channel bounds.

Outcomes are standardised (and negated for CAC) before fitting, so the
kernel hyperparameters are independent of budget and goal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from loguru import logger
from scipy.linalg import cho_factor, cho_solve
from scipy.stats import norm

from core.contracts import AlgorithmResult, Allocation, Assumptions, ChannelPriors
from core.exceptions import InvalidInputError
from models.outcome import check_budget, conversions_from_samples, is_better, objective_from_conversions
from optimization.constraints import (
    check_feasible,
    feasible_start,
    project_to_bounds,
    resolve_bounds,
    sample_feasible,
)


@dataclass
class BayesianResult:
    """Best observed allocation plus surrogate diagnostics."""

    allocation: Allocation
    performance: float
    iterations: int
    posterior_mean: float
    posterior_variance: float
    acquisition_values: list[float] = field(default_factory=list)
    n_evaluations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "allocation": self.allocation.to_dict(),
            "performance": self.performance,
            "iterations": self.iterations,
            "posterior_mean": self.posterior_mean,
            "posterior_variance": self.posterior_variance,
            "acquisition_values": list(self.acquisition_values),
            "n_evaluations": self.n_evaluations,
        }


class GaussianProcess:
    """Exact GP regression with an isotropic RBF kernel."""

    def __init__(self, length_scale: float = 0.1, variance: float = 1.0, noise: float = 0.01):
        self.length_scale = length_scale
        self.variance = variance
        self.noise = noise
        self._x: np.ndarray | None = None
        self._alpha: np.ndarray | None = None
        self._factor = None

    def kernel(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        sq = np.sum(a**2, axis=1)[:, None] + np.sum(b**2, axis=1)[None, :] - 2 * a @ b.T
        return self.variance * np.exp(-0.5 * np.maximum(sq, 0.0) / self.length_scale**2)

    def fit(self, x: np.ndarray, y: np.ndarray) -> "GaussianProcess":
        k = self.kernel(x, x) + self.noise * np.eye(len(x))
        self._factor = cho_factor(k, lower=True)
        self._alpha = cho_solve(self._factor, y)
        self._x = x
        return self

    def predict(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Posterior mean and variance at ``x``."""
        if self._x is None:
            raise RuntimeError("GaussianProcess.predict called before fit")
        k_star = self.kernel(x, self._x)
        mean = k_star @ self._alpha
        v = cho_solve(self._factor, k_star.T)
        var = self.variance - np.sum(k_star * v.T, axis=1)
        return mean, np.maximum(var, 1e-12)


def expected_improvement(mean: np.ndarray, var: np.ndarray, best: float, xi: float = 0.01) -> np.ndarray:
    """EI for maximisation of a standardised objective."""
    std = np.sqrt(var)
    improvement = mean - best - xi
    z = improvement / std
    return improvement * norm.cdf(z) + std * norm.pdf(z)


class BayesianAllocator:
    """
    GP + expected-improvement search over feasible allocations.

    Example:
        >>> allocator = BayesianAllocator(max_iterations=30, seed=7)
        >>> result = allocator.optimize(50_000, priors, assumptions)
        >>> allocator.to_algorithm_result(result).confidence
    """

    name = "Bayesian Optimization"

    def __init__(
        self,
        max_iterations: int = 30,
        n_initial: int = 5,
        n_candidates: int = 256,
        length_scale: float = 0.1,
        kernel_variance: float = 1.0,
        noise_variance: float = 0.01,
        xi: float = 0.01,
        perturbation: float = 0.05,
        seed: int | None = None,
    ):
        if max_iterations < 0 or n_initial < 1 or n_candidates < 1:
            raise InvalidInputError(
                "max_iterations must be >= 0, n_initial and n_candidates >= 1",
                field="bayesian",
            )
        self.max_iterations = max_iterations
        self.n_initial = n_initial
        self.n_candidates = n_candidates
        self.kernel_variance = kernel_variance
        self.xi = xi
        self.perturbation = perturbation
        self.seed = seed
        self.length_scale = length_scale
        self.noise_variance = noise_variance

    def optimize(
        self,
        budget: float,
        priors: ChannelPriors,
        assumptions: Assumptions,
    ) -> BayesianResult:
        budget = check_budget(budget)
        lo, hi = resolve_bounds(assumptions)
        check_feasible(lo, hi)

        rng = np.random.default_rng(self.seed)
        gp = GaussianProcess(self.length_scale, self.kernel_variance, self.noise_variance)
        goal = assumptions.goal
        sign = -1.0 if goal.minimize else 1.0
        cpm = priors.midpoints("cpm")
        ctr = priors.midpoints("ctr")
        cvr = priors.midpoints("cvr")

        def outcomes(x: np.ndarray) -> np.ndarray:
            conv = conversions_from_samples(budget, x, cpm, ctr, cvr)
            return np.atleast_1d(np.asarray(objective_from_conversions(conv, budget, assumptions), dtype=float))

        initial = np.vstack([feasible_start(lo, hi), sample_feasible(rng, lo, hi, self.n_initial - 1)])
        x_obs = initial
        y_obs = outcomes(initial)

        best_idx = self._best_index(goal, y_obs)
        acquisition_values: list[float] = []

        for iteration in range(self.max_iterations):
            y_std = self._standardise(sign * y_obs)
            gp.fit(x_obs, y_std)

            candidates = self._candidates(rng, x_obs[best_idx], lo, hi)
            mean, var = gp.predict(candidates)
            ei = expected_improvement(mean, var, float(y_std.max()), self.xi)
            pick = int(np.argmax(ei))
            acquisition_values.append(float(ei[pick]))

            x_next = candidates[pick : pick + 1]
            y_next = outcomes(x_next)
            x_obs = np.vstack([x_obs, x_next])
            y_obs = np.concatenate([y_obs, y_next])

            if is_better(goal, float(y_next[0]), float(y_obs[best_idx])):
                best_idx = len(y_obs) - 1
                logger.debug(f"Bayesian iteration {iteration}: new best {goal.value}={y_next[0]:.4f}")

        y_std = self._standardise(sign * y_obs)
        gp.fit(x_obs, y_std)
        post_mean, post_var = gp.predict(x_obs[best_idx : best_idx + 1])

        performance = float(y_obs[best_idx])
        logger.info(
            f"Bayesian allocator: {goal.value}={performance:.4f} from {len(y_obs)} evaluations "
            f"(posterior var={post_var[0]:.4f})"
        )

        return BayesianResult(
            allocation=Allocation.from_array(x_obs[best_idx]),
            performance=performance,
            iterations=self.max_iterations,
            posterior_mean=float(post_mean[0]),
            posterior_variance=float(post_var[0]),
            acquisition_values=acquisition_values,
            n_evaluations=len(y_obs),
        )

    def _candidates(self, rng: np.random.Generator, incumbent: np.ndarray, lo: np.ndarray, hi: np.ndarray) -> np.ndarray:
        n_local = self.n_candidates // 4
        random = sample_feasible(rng, lo, hi, self.n_candidates - n_local)
        if n_local == 0:
            return random
        local = incumbent + rng.normal(0.0, self.perturbation, size=(n_local, len(incumbent)))
        local = np.array([project_to_bounds(row, lo, hi) for row in local])
        return np.vstack([random, local])

    @staticmethod
    def _best_index(goal, y: np.ndarray) -> int:
        best = 0
        for i in range(1, len(y)):
            if is_better(goal, float(y[i]), float(y[best])):
                best = i
        return best

    @staticmethod
    def _standardise(y: np.ndarray) -> np.ndarray:
        std = y.std()
        if std <= 0 or not np.isfinite(std):
            return y - y.mean()
        return (y - y.mean()) / std

    def to_algorithm_result(self, result: BayesianResult) -> AlgorithmResult:
        """Confidence grows as the posterior tightens around the incumbent."""
        confidence = 0.6
        normalised_variance = min(1.0, result.posterior_variance / self.kernel_variance)
        confidence += 0.2 * (1 - normalised_variance)
        if result.acquisition_values:
            confidence += 0.2 * min(1.0, float(np.mean(result.acquisition_values)))

        return AlgorithmResult(
            name=self.name,
            allocation=result.allocation,
            confidence=min(1.0, confidence),
            performance=result.performance,
        )
