"""Tests for enhancement levels and the end-to-end pipeline."""

import pytest

from config import SearchConfig
from conftest import make_priors
from core.contracts import ALLOCATION_TOLERANCE, Assumptions, Severity, ValidationWarning
from core.exceptions import InfeasibleConstraintsError, InvalidAssumptionsError, InvalidInputError
from pipeline import OptimizationPipeline, ResultCache, infer_context, infer_industry, resolve_level
from validation import CompanySize, IndustryType, ValidationContext


class TestLevels:
    """Test enhancement level resolution."""

    def test_fast_skips_bayesian(self):
        """Test the fast level."""
        cfg = resolve_level("fast")
        assert not cfg.run_bayesian
        assert cfg.strategies == ["grid", "gradient", "heuristic"]

    def test_thorough_doubles_bayesian(self):
        """Test the thorough level lengthens the Bayesian search."""
        assert resolve_level("thorough").bayesian_iteration_factor == 2.0
        assert resolve_level("standard").bayesian_iteration_factor == 1.0

    def test_case_insensitive(self):
        """Test level names are normalised."""
        assert resolve_level(" Standard ").level == "standard"

    def test_unknown_level(self):
        """Test unknown levels are rejected."""
        with pytest.raises(InvalidInputError) as exc:
            resolve_level("turbo")
        assert exc.value.field == "level"


class TestContextInference:
    """Test industry and size inference."""

    def test_industry_from_goal(self):
        """Test the goal-based guesses."""
        assert infer_industry(Assumptions(goal="demos")) is IndustryType.SAAS
        assert infer_industry(Assumptions(goal="cac", target_cac=600)) is IndustryType.B2B
        assert infer_industry(Assumptions(goal="cac")) is None
        assert infer_industry(Assumptions(goal="revenue", avg_deal_size=100)) is IndustryType.ECOMMERCE
        assert infer_industry(Assumptions(goal="revenue", avg_deal_size=500)) is None

    def test_size_from_budget(self, demos):
        """Test the company size is inferred from the budget."""
        assert infer_context(5_000, demos).company_size is CompanySize.SMALL
        assert infer_context(500_000, demos).company_size is CompanySize.LARGE

    def test_explicit_context_wins(self, demos):
        """Test supplied tags are kept."""
        ctx = infer_context(5_000, demos, ValidationContext.build(industry="ecommerce", company_size="large"))
        assert ctx.industry is IndustryType.ECOMMERCE
        assert ctx.company_size is CompanySize.LARGE


class TestPipeline:
    """Test end-to-end planning."""

    def test_standard_run(self, seeded_config, priors, demos):
        """Test a full plan has a valid allocation and diagnostics."""
        plan = OptimizationPipeline(config=seeded_config).run(10_000, priors, demos)
        assert abs(sum(plan.allocation.to_dict().values()) - 1.0) <= ALLOCATION_TOLERANCE
        assert [r.name for r in plan.algorithm_results] == [
            "Monte Carlo", "Gradient Descent", "Bayesian Optimization", "Heuristic Validation",
        ]
        assert plan.simulation.p10 <= plan.simulation.p50 <= plan.simulation.p90
        assert 0.0 <= plan.confidence.overall <= 1.0
        assert plan.benchmark is not None
        assert plan.recommendations
        assert plan.summary.startswith("Recommended split:")
        assert not plan.from_cache

    def test_fast_level(self, seeded_config, priors, demos):
        """Test the fast level runs three strategies."""
        plan = OptimizationPipeline(config=seeded_config).run(10_000, priors, demos, level="fast")
        assert len(plan.algorithm_results) == 3
        assert plan.level == "fast"

    def test_baseline_performance_is_p50(self, seeded_config, priors, revenue):
        """Test the grid result carries the Monte Carlo median."""
        plan = OptimizationPipeline(config=seeded_config).run(10_000, priors, revenue, level="fast")
        baseline = plan.algorithm_results[0]
        assert baseline.performance == plan.simulation.p50
        assert baseline.confidence == 0.8

    def test_alternatives(self, seeded_config, priors, demos):
        """Test at most three alternatives, none equal to the final split."""
        plan = OptimizationPipeline(config=seeded_config).run(10_000, priors, demos)
        final = tuple(round(v, 3) for v in plan.allocation.to_dict().values())
        assert len(plan.alternatives) <= 3
        keys = [tuple(round(v, 3) for v in a.to_dict().values()) for a in plan.alternatives]
        assert final not in keys
        assert len(set(keys)) == len(keys)

    def test_cache_hit(self, seeded_config, priors, demos):
        """Test a repeated request is served from the cache."""
        cache = ResultCache()
        pipe = OptimizationPipeline(config=seeded_config, cache=cache)
        first = pipe.run(10_000, priors, demos, level="fast")
        second = pipe.run(10_000, priors, demos, level="fast")
        assert not first.from_cache
        assert second.from_cache
        assert second.allocation == first.allocation
        assert cache.stats()["hits"] == 1

    def test_shared_cache_separates_configs(self, seeded_config, priors, demos):
        """Test pipelines with different settings never share a cached plan."""
        cache = ResultCache()
        coarse = OptimizationPipeline(config=seeded_config, cache=cache)
        fine = OptimizationPipeline(
            config=seeded_config.model_copy(update={"search": SearchConfig(grid_step=0.05)}),
            cache=cache,
        )
        first = coarse.run(10_000, priors, demos, level="fast")
        second = fine.run(10_000, priors, demos, level="fast")
        assert first.baseline.step == 0.1
        assert second.baseline.step == 0.05
        assert not second.from_cache
        assert len(cache) == 2

    def test_cached_plan_isolated_from_callers(self, seeded_config, priors, demos):
        """Test mutating a returned plan leaves the cached entry intact."""
        pipe = OptimizationPipeline(config=seeded_config, cache=ResultCache())
        first = pipe.run(10_000, priors, demos, level="fast")
        n_warnings = len(first.warnings)
        n_alternatives = len(first.alternatives)

        first.recommendations.append("edited")
        hit = pipe.run(10_000, priors, demos, level="fast")
        assert hit.from_cache
        assert "edited" not in hit.recommendations
        hit.warnings.append(ValidationWarning(type="extra", message="m", severity=Severity.LOW))
        hit.alternatives.clear()

        again = pipe.run(10_000, priors, demos, level="fast")
        assert again.from_cache
        assert len(again.warnings) == n_warnings
        assert len(again.alternatives) == n_alternatives

    def test_cache_bypass(self, seeded_config, priors, demos):
        """Test use_cache=False neither reads nor writes."""
        cache = ResultCache()
        pipe = OptimizationPipeline(config=seeded_config, cache=cache)
        pipe.run(10_000, priors, demos, level="fast", use_cache=False)
        assert len(cache) == 0

    def test_bounds_respected(self, seeded_config, priors):
        """Test the final allocation honours channel bounds."""
        a = Assumptions(goal="demos", max_pct={"google": 0.4}, min_pct={"linkedin": 0.1})
        plan = OptimizationPipeline(config=seeded_config).run(10_000, priors, a, level="fast")
        assert plan.allocation.google <= 0.4 + 1e-6
        assert plan.allocation.linkedin >= 0.1 - 1e-6

    def test_skip_validation(self, seeded_config, priors, demos):
        """Test validate=False leaves out the benchmark analysis."""
        plan = OptimizationPipeline(config=seeded_config).run(10_000, priors, demos, level="fast", validate=False)
        assert plan.benchmark is None

    def test_to_dict(self, seeded_config, priors, demos):
        """Test the plan serialises."""
        data = OptimizationPipeline(config=seeded_config).run(10_000, priors, demos, level="fast").to_dict()
        assert set(data["allocation"]) == {"google", "meta", "tiktok", "linkedin"}
        assert data["level"] == "fast"
        assert data["context"]["industry"] == "saas"


class TestPipelineErrors:
    """Test error propagation."""

    def test_infeasible(self, seeded_config, priors):
        """Test infeasible bounds surface as InfeasibleConstraintsError."""
        a = Assumptions(goal="demos", min_pct={"google": 0.6, "meta": 0.6})
        with pytest.raises(InfeasibleConstraintsError):
            OptimizationPipeline(config=seeded_config).run(10_000, priors, a)

    def test_revenue_without_deal_size(self, seeded_config, priors):
        """Test revenue planning needs avg_deal_size."""
        with pytest.raises(InvalidAssumptionsError):
            OptimizationPipeline(config=seeded_config).run(10_000, priors, Assumptions(goal="revenue"))

    def test_unknown_level(self, seeded_config, priors, demos):
        """Test unknown levels are rejected before any work."""
        with pytest.raises(InvalidInputError):
            OptimizationPipeline(config=seeded_config).run(10_000, priors, demos, level="turbo")

    @pytest.mark.parametrize("runs", [50, 10_000])
    def test_runs_out_of_range(self, seeded_config, priors, demos, runs):
        """Test the Monte Carlo run bounds."""
        with pytest.raises(InvalidInputError):
            OptimizationPipeline(config=seeded_config).run(10_000, priors, demos, runs=runs)

    def test_degenerate_cac_warning(self, seeded_config, cac):
        """Test zero conversions everywhere produce a high-severity warning."""
        priors = make_priors(**{ch: {"ctr": (0.0, 0.0)} for ch in ("google", "meta", "tiktok", "linkedin")})
        plan = OptimizationPipeline(config=seeded_config).run(10_000, priors, cac, level="fast")
        degenerate = [w for w in plan.warnings if w.type == "degenerate_outcome"]
        assert len(degenerate) == 1
        assert degenerate[0].severity is Severity.HIGH
