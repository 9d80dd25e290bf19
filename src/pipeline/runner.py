"""
Pipeline runner -- the single entry point for planning a budget split.

Orchestrates:
  1. Search    -- grid allocator finds the baseline allocation
  2. Simulate  -- Monte Carlo distribution of the baseline's outcome
  3. Enhance   -- alternative strategies selected by the enhancement level
  4. Combine   -- confidence-weighted ensemble of all strategy results
  5. Validate  -- benchmark plausibility checks on the final allocation
  6. Score     -- stability, overall confidence, recommendations

Results are cached by a fingerprint of the rounded inputs when a
``ResultCache`` is supplied.
"""

from __future__ import annotations

import copy
import dataclasses
import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from config import MixPlanConfig, get_config
from core.contracts import (
    ALLOCATION_TOLERANCE,
    CHANNELS,
    AlgorithmResult,
    Allocation,
    Assumptions,
    BenchmarkAnalysis,
    ChannelPriors,
    Goal,
    Severity,
    ValidationWarning,
)
from ensemble.combiner import EnsembleCombiner, EnsembleResult
from ensemble.confidence import ConfidenceMetrics, ConfidenceScorer, StabilityMetrics
from models.outcome import check_budget, degenerate_cac, evaluate
from optimization.bayesian import BayesianAllocator
from optimization.gradient import GradientAllocator
from optimization.grid import GridAllocator, GridSearchResult
from optimization.heuristic import HeuristicAllocator
from pipeline.cache import ResultCache, config_digest, fingerprint
from pipeline.modes import resolve_level
from simulation.monte_carlo import MonteCarloSimulator, SimulationResult, check_runs
from validation.benchmark import BenchmarkValidator, CompanySize, IndustryType, ValidationContext


MAX_ALTERNATIVES = 3


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class PlanResult:
    """Complete planning output."""

    allocation: Allocation
    outcome: float
    baseline: GridSearchResult
    simulation: SimulationResult
    algorithm_results: list[AlgorithmResult] = field(default_factory=list)
    ensemble: EnsembleResult | None = None
    benchmark: BenchmarkAnalysis | None = None
    stability: StabilityMetrics | None = None
    confidence: ConfidenceMetrics | None = None
    recommendations: list[str] = field(default_factory=list)
    alternatives: list[Allocation] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    context: ValidationContext | None = None
    level: str = "standard"
    summary: str = ""
    from_cache: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "allocation": self.allocation.to_dict(),
            "outcome": self.outcome,
            "baseline": self.baseline.to_dict(),
            "simulation": self.simulation.to_dict(),
            "algorithm_results": [r.model_dump(mode="json") for r in self.algorithm_results],
            "ensemble": self.ensemble.to_dict() if self.ensemble else None,
            "benchmark": self.benchmark.model_dump(mode="json") if self.benchmark else None,
            "stability": self.stability.to_dict() if self.stability else None,
            "confidence": self.confidence.to_dict() if self.confidence else None,
            "recommendations": list(self.recommendations),
            "alternatives": [a.to_dict() for a in self.alternatives],
            "warnings": [w.to_dict() for w in self.warnings],
            "context": {
                "industry": self.context.industry.value if self.context and self.context.industry else None,
                "company_size": self.context.company_size.value if self.context and self.context.company_size else None,
            },
            "level": self.level,
            "summary": self.summary,
            "from_cache": self.from_cache,
            "duration_seconds": self.duration_seconds,
        }


# ---------------------------------------------------------------------------
# Context inference
# ---------------------------------------------------------------------------

def infer_industry(assumptions: Assumptions) -> IndustryType | None:
    """Guess the industry from the planning goal and its parameters."""
    if assumptions.goal is Goal.CAC and assumptions.target_cac is not None and assumptions.target_cac > 500:
        return IndustryType.B2B
    if assumptions.goal is Goal.REVENUE and assumptions.avg_deal_size is not None and assumptions.avg_deal_size < 200:
        return IndustryType.ECOMMERCE
    if assumptions.goal is Goal.DEMOS:
        return IndustryType.SAAS
    return None


def infer_context(
    budget: float,
    assumptions: Assumptions,
    context: ValidationContext | None = None,
) -> ValidationContext:
    """Fill the gaps of a (possibly missing) context from the request."""
    context = context or ValidationContext()
    return ValidationContext(
        industry=context.industry or infer_industry(assumptions),
        company_size=context.company_size or CompanySize.from_budget(budget),
        goal=context.goal or assumptions.goal,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class OptimizationPipeline:
    """
    End-to-end budget planner.

    Example::

        cache = ResultCache()
        pipe = OptimizationPipeline(cache=cache)
        plan = pipe.run(50_000, priors, Assumptions(goal="demos"))
        print(plan.summary)
    """

    def __init__(self, config: MixPlanConfig | None = None, cache: ResultCache | None = None):
        self.config = config or get_config()
        self.cache = cache

    def run(
        self,
        budget: float,
        priors: ChannelPriors,
        assumptions: Assumptions,
        runs: int | None = None,
        level: str = "standard",
        context: ValidationContext | None = None,
        validate: bool = True,
        use_cache: bool = True,
    ) -> PlanResult:
        """
        Plan a budget split.

        Args:
            budget:      Total budget (> 0).
            priors:      Channel priors.
            assumptions: Goal and optional per-channel bounds.
            runs:        Monte Carlo trials; defaults to the configured value.
            level:       ``fast``, ``standard`` or ``thorough``.
            context:     Industry / company size; inferred where missing.
            validate:    Run benchmark validation on the final allocation.
            use_cache:   Read and write the result cache when one is attached.

        Returns:
            PlanResult with the final allocation and all diagnostics.
        """
        t0 = time.time()
        budget = check_budget(budget)
        runs = check_runs(self.config.simulation.runs if runs is None else runs)
        enhancement = resolve_level(level)
        context = infer_context(budget, assumptions, context)

        key = None
        if use_cache and self.cache is not None and self.config.cache.enabled:
            key = fingerprint(
                budget, priors, assumptions, runs,
                level=enhancement.level,
                validate=validate,
                industry=context.industry,
                company_size=context.company_size,
                config=config_digest(self.config),
            )
            cached = self.cache.get(key)
            if cached is not None:
                logger.info(f"Plan served from cache ({key[:12]})")
                return dataclasses.replace(copy.deepcopy(cached), from_cache=True)

        # -- Search -----------------------------------------------------------
        logger.info(f"Pipeline step: search (budget={budget:,.0f}, goal={assumptions.goal.value})")
        search = self.config.search
        baseline = GridAllocator(step=search.grid_step, top_k=search.top_k).search(budget, priors, assumptions)

        warnings: list[ValidationWarning] = []
        if assumptions.goal is Goal.CAC and baseline.best_outcome >= degenerate_cac(budget) * (1 - 1e-9):
            warnings.append(ValidationWarning(
                type="degenerate_outcome",
                message="No allocation produces conversions under these priors; CAC is undefined.",
                severity=Severity.HIGH,
            ))
            logger.warning("Degenerate outcome: no conversions at any grid allocation")

        # -- Simulate ---------------------------------------------------------
        logger.info(f"Pipeline step: simulate ({runs} runs)")
        sim_cfg = self.config.simulation
        simulation = MonteCarloSimulator(
            runs=runs, distribution=sim_cfg.distribution, seed=sim_cfg.seed,
        ).simulate(budget, baseline.best_allocation, priors, assumptions)

        # -- Enhance ----------------------------------------------------------
        logger.info(f"Pipeline step: enhance (level={enhancement.level})")
        results = [baseline.to_algorithm_result(
            confidence=self.config.strategies.grid_confidence,
            performance=simulation.p50,
            name="Monte Carlo",
        )]
        results.extend(self._run_strategies(budget, priors, assumptions, enhancement, simulation))

        # -- Combine ----------------------------------------------------------
        logger.info(f"Pipeline step: combine ({len(results)} results)")
        ens = self.config.ensemble
        ensemble = EnsembleCombiner(
            max_variance=ens.max_variance,
            outlier_multiple=ens.outlier_multiple,
            min_outlier_deviation=ens.min_outlier_deviation,
            low_consensus_threshold=ens.low_consensus_threshold,
            variance_threshold=ens.variance_threshold,
            max_weight=ens.max_weight,
        ).combine(results)
        final = ensemble.final_allocation
        warnings.extend(ensemble.warnings)

        # -- Validate ---------------------------------------------------------
        benchmark = None
        if validate:
            logger.info("Pipeline step: validate")
            benchmark = BenchmarkValidator(self.config.validation).validate(final, priors, context)
            warnings.extend(benchmark.warnings)

        # -- Score ------------------------------------------------------------
        scorer = ConfidenceScorer()
        stability = scorer.assess_stability(results)
        confidence = scorer.score(ensemble.consensus, stability, benchmark)
        recommendations = scorer.recommendations(confidence)

        outcome = evaluate(budget, final, priors, assumptions)
        alternatives = self._alternatives(results, baseline, final, assumptions.goal)

        plan = PlanResult(
            allocation=final,
            outcome=outcome,
            baseline=baseline,
            simulation=simulation,
            algorithm_results=results,
            ensemble=ensemble,
            benchmark=benchmark,
            stability=stability,
            confidence=confidence,
            recommendations=recommendations,
            alternatives=alternatives,
            warnings=warnings,
            context=context,
            level=enhancement.level,
        )
        plan.summary = self._summary(plan, assumptions.goal)
        plan.duration_seconds = round(time.time() - t0, 3)

        logger.info(
            f"Pipeline complete in {plan.duration_seconds:.2f}s: "
            f"confidence={confidence.overall:.2f}, warnings={len(warnings)}"
        )

        if key is not None:
            self.cache.set(key, copy.deepcopy(plan), ttl=self.config.cache.ttl_seconds)
        return plan

    # ------------------------------------------------------------------
    # Internal steps
    # ------------------------------------------------------------------

    def _run_strategies(self, budget, priors, assumptions, enhancement, simulation) -> list[AlgorithmResult]:
        strat = self.config.strategies
        results = []

        if enhancement.run_gradient:
            gradient = GradientAllocator(
                max_iterations=strat.gradient_max_iterations,
                tolerance=strat.gradient_tolerance,
            )
            outcome = gradient.optimize(budget, priors, assumptions)
            results.append(gradient.to_algorithm_result(outcome, monte_carlo_p50=simulation.p50))

        if enhancement.run_bayesian:
            bayesian = BayesianAllocator(
                max_iterations=int(strat.bayesian_max_iterations * enhancement.bayesian_iteration_factor),
                n_initial=strat.bayesian_initial_points,
                n_candidates=strat.bayesian_candidates,
                length_scale=strat.bayesian_length_scale,
                kernel_variance=strat.bayesian_kernel_variance,
                noise_variance=strat.bayesian_noise_variance,
                seed=strat.seed,
            )
            outcome = bayesian.optimize(budget, priors, assumptions)
            results.append(bayesian.to_algorithm_result(outcome))

        if enhancement.run_heuristic:
            heuristic = HeuristicAllocator(confidence=strat.heuristic_confidence)
            outcome = heuristic.allocate(budget, priors, assumptions)
            results.append(heuristic.to_algorithm_result(outcome))

        return results

    @staticmethod
    def _alternatives(
        results: list[AlgorithmResult],
        baseline: GridSearchResult,
        final: Allocation,
        goal: Goal,
    ) -> list[Allocation]:
        """
        Up to three distinct allocations other than the final one.

        Strategy results come first, ranked by confidence and then by
        performance; the grid's runners-up fill any remaining slots.
        """
        def key_of(shares: dict[str, float]) -> tuple[float, ...]:
            return tuple(round(float(shares.get(ch.value, 0.0)), 3) for ch in CHANNELS)

        ranked = sorted(
            range(len(results)),
            key=lambda i: (-results[i].confidence, results[i].performance if goal.minimize else -results[i].performance),
        )

        seen = {key_of(final.to_dict())}
        alternatives: list[Allocation] = []
        candidates = [results[i].allocation for i in ranked] + [a.to_dict() for a in baseline.alternatives()]
        for shares in candidates:
            if len(alternatives) >= MAX_ALTERNATIVES:
                break
            k = key_of(shares)
            if k in seen:
                continue
            values = [shares.get(ch.value) for ch in CHANNELS]
            if any(v is None or not 0 <= v <= 1 for v in values) or abs(sum(values) - 1) > ALLOCATION_TOLERANCE:
                continue
            seen.add(k)
            alternatives.append(Allocation.from_shares(shares))
        return alternatives

    @staticmethod
    def _summary(plan: PlanResult, goal: Goal) -> str:
        split = ", ".join(f"{ch.value} {share:.0%}" for ch, share in plan.allocation.items())
        sim = plan.simulation
        unit = {"demos": "demos", "revenue": "revenue", "cac": "CAC"}[goal.value]
        parts = [
            f"Recommended split: {split}.",
            f"Expected {unit} {plan.outcome:,.2f} (baseline p10 {sim.p10:,.2f}, p50 {sim.p50:,.2f}, p90 {sim.p90:,.2f}).",
            f"Combined {len(plan.algorithm_results)} strategies at {plan.level} level",
        ]
        if plan.confidence is not None:
            parts[-1] += f" with {plan.confidence.overall:.0%} confidence."
        else:
            parts[-1] += "."
        high = sum(1 for w in plan.warnings if w.severity is Severity.HIGH)
        if plan.warnings:
            parts.append(f"{len(plan.warnings)} warning(s), {high} high severity.")
        return " ".join(parts)
