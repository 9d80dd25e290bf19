"""
Benchmark validator -- sanity checks an allocation against what the
priors and industry norms would lead one to expect.

Checks implemented:
  1. Expected allocation  -- performance-ratio split, adjusted for
                             industry and company size
  2. Deviation            -- per-channel distance from the expectation
  3. Unrealistic shares   -- absolute min/max and typical industry ranges
  4. Portfolio shape      -- concentration, diversification, goal fit

The validator never raises on plausibility problems; everything it
finds is reported as a ``ValidationWarning``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
from loguru import logger

from config import BenchmarkThresholds
from core.contracts import (
    CHANNELS,
    Allocation,
    BenchmarkAnalysis,
    Channel,
    ChannelPriors,
    Goal,
    Severity,
    ValidationWarning,
)
from models.outcome import performance_allocation


# ---------------------------------------------------------------------------
# Context tags and lookup tables
# ---------------------------------------------------------------------------

class IndustryType(str, Enum):
    B2B = "b2b"
    ECOMMERCE = "ecommerce"
    SAAS = "saas"

    @classmethod
    def resolve(cls, tag: Any) -> "IndustryType | None":
        """Tag to enum; unknown or missing tags resolve to None."""
        if isinstance(tag, cls) or tag is None:
            return tag
        try:
            return cls(str(tag).lower())
        except ValueError:
            logger.debug(f"Unknown industry tag '{tag}'; using default benchmarks")
            return None


class CompanySize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @classmethod
    def resolve(cls, tag: Any) -> "CompanySize | None":
        if isinstance(tag, cls) or tag is None:
            return tag
        try:
            return cls(str(tag).lower())
        except ValueError:
            logger.debug(f"Unknown company size '{tag}'; no size adjustment")
            return None

    @classmethod
    def from_budget(cls, budget: float) -> "CompanySize":
        if budget < 10_000:
            return cls.SMALL
        if budget < 100_000:
            return cls.MEDIUM
        return cls.LARGE


G, M, T, L = CHANNELS

# Typical share of budget per channel across industries.
TYPICAL_RANGES: dict[Channel, tuple[float, float]] = {
    G: (0.25, 0.50),
    M: (0.20, 0.45),
    T: (0.05, 0.25),
    L: (0.05, 0.30),
}

BASE_ALLOCATION: dict[Channel, float] = {G: 0.35, M: 0.30, T: 0.15, L: 0.20}

INDUSTRY_ADJUSTMENTS: dict[IndustryType, dict[Channel, float]] = {
    IndustryType.B2B: {G: 0.05, M: -0.05, T: -0.10, L: 0.10},
    IndustryType.ECOMMERCE: {G: 0.10, M: 0.10, T: 0.05, L: -0.25},
    IndustryType.SAAS: {G: 0.05, M: -0.05, T: -0.05, L: 0.05},
}

SIZE_ADJUSTMENTS: dict[CompanySize, dict[Channel, float]] = {
    CompanySize.SMALL: {G: 0.10, M: 0.05, T: -0.10, L: -0.05},
    CompanySize.MEDIUM: {G: 0.0, M: 0.0, T: 0.0, L: 0.0},
    CompanySize.LARGE: {G: -0.05, M: -0.05, T: 0.05, L: 0.05},
}


@dataclass(frozen=True)
class ValidationContext:
    """Optional business context for the validator."""

    industry: IndustryType | None = None
    company_size: CompanySize | None = None
    goal: Goal | None = None

    @classmethod
    def build(cls, industry: Any = None, company_size: Any = None, goal: Any = None) -> "ValidationContext":
        return cls(
            industry=IndustryType.resolve(industry),
            company_size=CompanySize.resolve(company_size),
            goal=Goal(goal) if goal is not None else None,
        )


def _clamp_normalise(shares: np.ndarray) -> np.ndarray:
    shares = np.clip(shares, 0.0, None)
    total = shares.sum()
    if total <= 0:
        return np.full(len(shares), 1.0 / len(shares))
    return shares / total


def _pct(x: float) -> str:
    return f"{x * 100:.1f}%"


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class BenchmarkValidator:
    """
    Compare allocations against benchmark expectations.

    Usage::

        validator = BenchmarkValidator()
        analysis = validator.validate(allocation, priors, ValidationContext.build("b2b", "small", "cac"))
        for w in analysis.warnings:
            print(w.type, w.severity)
    """

    def __init__(self, thresholds: BenchmarkThresholds | None = None):
        self.thresholds = thresholds or BenchmarkThresholds()

    def update_thresholds(self, **changes: float) -> BenchmarkThresholds:
        """Replace selected thresholds; the result is re-validated."""
        self.thresholds = BenchmarkThresholds.model_validate({**self.thresholds.model_dump(), **changes})
        logger.debug(f"Benchmark thresholds updated: {changes}")
        return self.thresholds

    def expected_allocation(self, priors: ChannelPriors, context: ValidationContext | None = None) -> np.ndarray:
        """Performance-ratio split with additive context adjustments."""
        expected = performance_allocation(priors)
        if context is None or (context.industry is None and context.company_size is None):
            return expected

        adjusted = expected.copy()
        if context.industry is not None:
            adjusted += [INDUSTRY_ADJUSTMENTS[context.industry][ch] for ch in CHANNELS]
        if context.company_size is not None:
            adjusted += [SIZE_ADJUSTMENTS[context.company_size][ch] for ch in CHANNELS]
        return _clamp_normalise(adjusted)

    def validate(
        self,
        allocation: Allocation,
        priors: ChannelPriors,
        context: ValidationContext | None = None,
    ) -> BenchmarkAnalysis:
        """
        Score an allocation's deviation from benchmarks and collect warnings.

        Args:
            allocation: The allocation to check.
            priors:     Channel priors used for the performance-ratio split.
            context:    Optional industry, company size and goal.

        Returns:
            BenchmarkAnalysis with warnings in channel order, then
            portfolio-level warnings.
        """
        expected = self.expected_allocation(priors, context)
        shares = allocation.as_array()
        deviations = np.abs(shares - expected)

        warnings: list[ValidationWarning] = []
        for i, ch in enumerate(CHANNELS):
            warnings.extend(self._range_warnings(ch, float(shares[i])))
            warnings.extend(self._deviation_warnings(ch, float(shares[i]), float(expected[i]), float(deviations[i])))
        warnings.extend(self._portfolio_warnings(shares, context))

        analysis = BenchmarkAnalysis(
            deviation_score=float(min(1.0, deviations.sum() / 2)),
            channel_deviations={ch: float(d) for ch, d in zip(CHANNELS, deviations)},
            warnings=warnings,
        )
        logger.info(
            f"Benchmark validation: deviation={analysis.deviation_score:.3f}, "
            f"{len(warnings)} warning(s)"
        )
        return analysis

    def industry_recommendations(self, industry: Any) -> Allocation | None:
        """Reference split for an industry, or None for unknown tags."""
        resolved = IndustryType.resolve(industry)
        if resolved is None:
            return None
        base = np.array([BASE_ALLOCATION[ch] for ch in CHANNELS])
        adjusted = base + [INDUSTRY_ADJUSTMENTS[resolved][ch] for ch in CHANNELS]
        return Allocation.from_array(_clamp_normalise(adjusted))

    # -- individual checks ----------------------------------------------------

    def _range_warnings(self, channel: Channel, share: float) -> list[ValidationWarning]:
        th = self.thresholds
        warnings = []

        if 0 < share < th.min_allocation:
            warnings.append(ValidationWarning(
                type="unrealistic_allocation",
                message=(
                    f"{channel.value} allocation ({_pct(share)}) is below minimum viable "
                    f"threshold ({_pct(th.min_allocation)})"
                ),
                severity=Severity.MEDIUM,
                channel=channel,
            ))

        if share > th.max_allocation:
            warnings.append(ValidationWarning(
                type="unrealistic_allocation",
                message=(
                    f"{channel.value} allocation ({_pct(share)}) exceeds maximum recommended "
                    f"threshold ({_pct(th.max_allocation)})"
                ),
                severity=Severity.HIGH,
                channel=channel,
            ))

        lo, hi = TYPICAL_RANGES[channel]
        if share > 0 and not lo <= share <= hi:
            midpoint, half_width = (lo + hi) / 2, (hi - lo) / 2
            far = abs(share - midpoint) > th.range_severity_multiple * half_width
            warnings.append(ValidationWarning(
                type="unrealistic_allocation",
                message=(
                    f"{channel.value} allocation ({_pct(share)}) is outside typical industry "
                    f"range ({_pct(lo)}-{_pct(hi)})"
                ),
                severity=Severity.HIGH if far else Severity.MEDIUM,
                channel=channel,
            ))

        return warnings

    def _deviation_warnings(self, channel: Channel, share: float, expected: float, deviation: float) -> list[ValidationWarning]:
        th = self.thresholds
        if deviation > th.extreme_deviation:
            return [ValidationWarning(
                type="extreme_benchmark_deviation",
                message=(
                    f"{channel.value} allocation ({_pct(share)}) deviates extremely from "
                    f"benchmark expectation ({_pct(expected)})"
                ),
                severity=Severity.HIGH,
                channel=channel,
            )]
        if deviation > th.deviation_warning:
            return [ValidationWarning(
                type="benchmark_deviation",
                message=(
                    f"{channel.value} allocation ({_pct(share)}) deviates significantly from "
                    f"benchmark expectation ({_pct(expected)})"
                ),
                severity=Severity.MEDIUM,
                channel=channel,
            )]
        return []

    def _portfolio_warnings(self, shares: np.ndarray, context: ValidationContext | None) -> list[ValidationWarning]:
        th = self.thresholds
        warnings = []

        top = float(shares.max())
        if top > th.concentration_limit:
            warnings.append(ValidationWarning(
                type="portfolio_concentration",
                message=(
                    f"Portfolio is over-concentrated with {_pct(top)} in a single channel. "
                    "Consider diversification."
                ),
                severity=Severity.HIGH,
                channel=CHANNELS[int(shares.argmax())],
            ))

        active = int((shares > th.active_channel_share).sum())
        if active < th.min_active_channels:
            warnings.append(ValidationWarning(
                type="insufficient_diversification",
                message=(
                    f"Portfolio uses only {active} channel(s) above {_pct(th.active_channel_share)}. "
                    "Consider spreading budget for better risk management."
                ),
                severity=Severity.MEDIUM,
            ))

        if context is not None and context.goal is not None:
            linkedin = float(shares[CHANNELS.index(Channel.LINKEDIN)])
            google = float(shares[CHANNELS.index(Channel.GOOGLE)])
            if context.goal is Goal.CAC and context.industry is IndustryType.B2B and linkedin < 0.1:
                warnings.append(ValidationWarning(
                    type="goal_channel_mismatch",
                    message="For B2B CAC optimization, consider allocating more budget to LinkedIn for better lead quality.",
                    severity=Severity.LOW,
                    channel=Channel.LINKEDIN,
                ))
            if context.goal is Goal.REVENUE and google < 0.2:
                warnings.append(ValidationWarning(
                    type="goal_channel_mismatch",
                    message="For revenue optimization, consider allocating more budget to Google for higher conversion volume.",
                    severity=Severity.LOW,
                    channel=Channel.GOOGLE,
                ))

        return warnings
