"""Tests for the alternative allocation strategies and bound helpers."""

import threading

import numpy as np
import pytest

from core.contracts import Assumptions
from core.exceptions import InfeasibleConstraintsError, InvalidInputError
from models import evaluate, performance_allocation
from optimization import (
    BayesianAllocator,
    GradientAllocator,
    HeuristicAllocator,
    project_to_bounds,
    resolve_bounds,
    respects_bounds,
    sample_feasible,
)
from optimization.bayesian import GaussianProcess, expected_improvement
from optimization.constraints import feasible_start


BOUNDED = Assumptions(goal="demos", min_pct={"linkedin": 0.1}, max_pct={"google": 0.4, "meta": 0.3})


class TestBounds:
    """Test projection and sampling onto the bounded simplex."""

    def test_projection_sums_to_one(self):
        """Test an arbitrary vector is moved onto the simplex."""
        lo, hi = resolve_bounds(BOUNDED)
        x = project_to_bounds(np.array([0.9, 0.9, 0.1, 0.0]), lo, hi)
        assert x.sum() == pytest.approx(1.0)
        assert respects_bounds(x, lo, hi)

    def test_projection_keeps_feasible_points(self):
        """Test a point already inside is unchanged."""
        lo, hi = resolve_bounds(BOUNDED)
        x = np.array([0.3, 0.3, 0.2, 0.2])
        assert project_to_bounds(x, lo, hi) == pytest.approx(x)

    def test_projection_handles_nan(self):
        """Test non-finite entries count as zero."""
        lo, hi = resolve_bounds(Assumptions(goal="demos"))
        x = project_to_bounds(np.array([np.nan, 0.5, 0.5, 0.0]), lo, hi)
        assert x == pytest.approx([0.0, 0.5, 0.5, 0.0])

    def test_samples_feasible(self):
        """Test random draws respect the bounds."""
        lo, hi = resolve_bounds(BOUNDED)
        draws = sample_feasible(np.random.default_rng(0), lo, hi, 200)
        assert draws.shape == (200, 4)
        assert respects_bounds(draws, lo, hi).all()
        np.testing.assert_allclose(draws.sum(axis=1), 1.0)

    def test_feasible_start_is_equal_split(self):
        """Test the unbounded start point."""
        lo, hi = resolve_bounds(Assumptions(goal="demos"))
        assert feasible_start(lo, hi) == pytest.approx(np.full(4, 0.25))


class TestGradient:
    """Test the SLSQP allocator."""

    def test_moves_budget_to_best_channel(self, priors, demos):
        """Test the linear objective is maximised at the best vertex."""
        result = GradientAllocator().optimize(10_000, priors, demos)
        assert result.allocation.google == pytest.approx(1.0, abs=1e-3)
        assert result.performance >= evaluate(10_000, [0.25] * 4, priors, demos)

    def test_respects_bounds(self, priors):
        """Test bounded channels stay inside their limits."""
        result = GradientAllocator().optimize(10_000, priors, BOUNDED)
        lo, hi = resolve_bounds(BOUNDED)
        assert respects_bounds(result.allocation.as_array(), lo, hi, tol=1e-6)
        assert sum(result.allocation.to_dict().values()) == pytest.approx(1.0, abs=1e-6)

    def test_minimises_cac(self, priors, cac):
        """Test CAC is not worse than the equal split."""
        result = GradientAllocator().optimize(1000, priors, cac)
        assert result.performance <= evaluate(1000, [0.25] * 4, priors, cac) + 1e-9

    def test_infeasible(self, priors):
        """Test infeasible bounds are rejected."""
        with pytest.raises(InfeasibleConstraintsError):
            GradientAllocator().optimize(1000, priors, Assumptions(goal="demos", min_pct={"google": 0.7, "meta": 0.7}))

    def test_confidence(self, priors, demos):
        """Test a converged, competitive run gets high confidence."""
        allocator = GradientAllocator()
        result = allocator.optimize(10_000, priors, demos)
        ar = allocator.to_algorithm_result(result, monte_carlo_p50=result.performance)
        assert ar.name == "Gradient Descent"
        assert 0.5 <= ar.confidence <= 1.0
        if result.converged:
            assert ar.confidence >= 0.9

    def test_compare_with_monte_carlo(self, priors, demos):
        """Test the relative gap report."""
        allocator = GradientAllocator()
        result = allocator.optimize(10_000, priors, demos)
        report = allocator.compare_with_monte_carlo(result, result.performance * 2)
        assert report["relative_performance"] == pytest.approx(0.5)
        assert not report["is_competitive"]


class TestBayesian:
    """Test the Gaussian-process allocator."""

    def test_seed_repeatable(self, priors, demos):
        """Test a fixed seed gives the same allocation."""
        a = BayesianAllocator(max_iterations=8, n_candidates=64, seed=3).optimize(10_000, priors, demos)
        b = BayesianAllocator(max_iterations=8, n_candidates=64, seed=3).optimize(10_000, priors, demos)
        assert a.allocation.to_dict() == b.allocation.to_dict()
        assert a.performance == b.performance

    def test_not_worse_than_start(self, priors, revenue):
        """Test the incumbent never loses to the equal split it starts from."""
        result = BayesianAllocator(max_iterations=10, n_candidates=64, seed=1).optimize(10_000, priors, revenue)
        assert result.performance >= evaluate(10_000, [0.25] * 4, priors, revenue)
        assert result.n_evaluations == 5 + 10

    def test_feasible(self, priors):
        """Test every evaluated point respects the bounds."""
        result = BayesianAllocator(max_iterations=10, n_candidates=64, seed=2).optimize(10_000, priors, BOUNDED)
        lo, hi = resolve_bounds(BOUNDED)
        assert respects_bounds(result.allocation.as_array(), lo, hi, tol=1e-6)

    def test_zero_iterations(self, priors, demos):
        """Test the initial design alone still yields a result."""
        result = BayesianAllocator(max_iterations=0, seed=0).optimize(1000, priors, demos)
        assert result.acquisition_values == []
        assert result.n_evaluations == 5

    def test_confidence_range(self, priors, demos):
        """Test confidence lies in [0.6, 1]."""
        allocator = BayesianAllocator(max_iterations=5, n_candidates=32, seed=4)
        ar = allocator.to_algorithm_result(allocator.optimize(1000, priors, demos))
        assert 0.6 <= ar.confidence <= 1.0

    def test_invalid_settings(self):
        """Test nonsensical settings are rejected."""
        with pytest.raises(InvalidInputError):
            BayesianAllocator(n_initial=0)

    def test_shared_instance_across_threads(self, priors, demos):
        """Test concurrent calls on one allocator match sequential calls."""
        allocator = BayesianAllocator(max_iterations=6, n_candidates=32, seed=5)
        expected = allocator.optimize(10_000, priors, demos).allocation.to_dict()
        results = [None] * 4

        def worker(i):
            results[i] = allocator.optimize(10_000, priors, demos).allocation.to_dict()

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [expected] * 4
        assert not hasattr(allocator, "gp")

    def test_gp_interpolates(self):
        """Test the posterior mean passes near observed points."""
        x = np.array([[0.0, 0.0], [1.0, 1.0]])
        y = np.array([1.0, -1.0])
        gp = GaussianProcess(length_scale=0.5, variance=1.0, noise=1e-6).fit(x, y)
        mean, var = gp.predict(x)
        assert mean == pytest.approx(y, abs=1e-3)
        assert (var < 1e-3).all()

    def test_expected_improvement_positive(self):
        """Test EI is non-negative and grows with uncertainty."""
        ei = expected_improvement(np.array([0.0, 0.0]), np.array([0.01, 1.0]), best=0.0)
        assert (ei >= 0).all()
        assert ei[1] > ei[0]


class TestHeuristic:
    """Test the performance-ratio heuristic."""

    def test_proportional_to_scores(self, priors, demos):
        """Test shares follow ctr * cvr / cpm."""
        result = HeuristicAllocator().allocate(1000, priors, demos)
        assert result.allocation.as_array() == pytest.approx(performance_allocation(priors))
        assert result.scores["google"] == pytest.approx(0.05 * 0.05 / 10)

    def test_bounds_applied(self, priors):
        """Test the heuristic split is moved onto the bounds."""
        result = HeuristicAllocator().allocate(1000, priors, BOUNDED)
        lo, hi = resolve_bounds(BOUNDED)
        assert respects_bounds(result.allocation.as_array(), lo, hi, tol=1e-6)

    def test_algorithm_result(self, priors, demos):
        """Test the fixed confidence."""
        allocator = HeuristicAllocator(confidence=0.7)
        ar = allocator.to_algorithm_result(allocator.allocate(1000, priors, demos))
        assert ar.name == "Heuristic Validation"
        assert ar.confidence == 0.7
