"""
Confidence scoring for ensemble recommendations.

Turns strategy agreement, allocation stability, benchmark deviation and
performance consistency into an overall score in [0, 1], a score per
channel, and plain-text recommendations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
from loguru import logger

from core.contracts import CHANNELS, AlgorithmResult, BenchmarkAnalysis, Channel, ConsensusMetrics
from core.exceptions import EmptyInputError
from ensemble.combiner import allocation_matrix


@dataclass
class StabilityMetrics:
    overall_stability: float
    channel_stability: dict[Channel, float] = field(default_factory=dict)
    convergence_score: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_stability": self.overall_stability,
            "channel_stability": {ch.value: v for ch, v in self.channel_stability.items()},
            "convergence_score": self.convergence_score,
        }


@dataclass
class ConfidenceMetrics:
    overall: float
    per_channel: dict[Channel, float] = field(default_factory=dict)
    stability: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "per_channel": {ch.value: v for ch, v in self.per_channel.items()},
            "stability": self.stability,
        }


def _clamp(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


class ConfidenceScorer:
    """
    Weighted blend of four confidence signals.

    Weights default to consensus 0.30, stability 0.25, benchmark 0.25
    and performance consistency 0.20.  Without a benchmark analysis the
    benchmark signal is a neutral 0.7.
    """

    def __init__(
        self,
        consensus_weight: float = 0.3,
        stability_weight: float = 0.25,
        benchmark_weight: float = 0.25,
        performance_weight: float = 0.2,
        neutral_benchmark: float = 0.7,
        variance_scale: float = 10.0,
    ):
        total = consensus_weight + stability_weight + benchmark_weight + performance_weight
        self.consensus_weight = consensus_weight / total
        self.stability_weight = stability_weight / total
        self.benchmark_weight = benchmark_weight / total
        self.performance_weight = performance_weight / total
        self.neutral_benchmark = neutral_benchmark
        self.variance_scale = variance_scale

    def assess_stability(self, results: Sequence[AlgorithmResult]) -> StabilityMetrics:
        """
        Stability of allocations and performance across strategy results.

        Channel stability is ``1 - 10 * variance`` of that channel's share.
        Convergence is ``1 - std / |mean|`` of the performance values, so
        it does not depend on the outcome's units.
        """
        results = list(results)
        if not results:
            raise EmptyInputError("Cannot assess stability of an empty list of results")

        if len(results) == 1:
            return StabilityMetrics(
                overall_stability=1.0,
                channel_stability={ch: 1.0 for ch in CHANNELS},
                convergence_score=1.0,
            )

        matrix = allocation_matrix(results)
        variances = []
        channel_stability = {}
        for j, ch in enumerate(CHANNELS):
            column = matrix[:, j]
            column = column[np.isfinite(column)]
            variance = float(np.var(column)) if len(column) > 1 else 0.0
            variances.append(variance)
            channel_stability[ch] = _clamp(1 - variance * self.variance_scale)

        overall = _clamp(1 - float(np.mean(variances)) * self.variance_scale)

        perf = np.array([float(r.performance) for r in results])
        perf = perf[np.isfinite(perf)]
        if len(perf) < 2 or np.mean(np.abs(perf)) == 0:
            convergence = 1.0
        else:
            convergence = _clamp(1 - float(np.std(perf)) / abs(float(np.mean(perf))))

        return StabilityMetrics(
            overall_stability=overall,
            channel_stability=channel_stability,
            convergence_score=convergence,
        )

    def score(
        self,
        consensus: ConsensusMetrics,
        stability: StabilityMetrics,
        benchmark: BenchmarkAnalysis | None = None,
    ) -> ConfidenceMetrics:
        benchmark_confidence = (
            _clamp(1 - benchmark.deviation_score) if benchmark is not None else self.neutral_benchmark
        )

        overall = (
            consensus.agreement * self.consensus_weight
            + stability.overall_stability * self.stability_weight
            + benchmark_confidence * self.benchmark_weight
            + stability.convergence_score * self.performance_weight
        )

        per_channel = {}
        for ch in CHANNELS:
            channel_consensus = _clamp(1 - consensus.variance.get(ch, 0.0) * 5)
            channel_benchmark = (
                _clamp(1 - benchmark.channel_deviations.get(ch, 0.0) * 2)
                if benchmark is not None
                else self.neutral_benchmark
            )
            per_channel[ch] = _clamp(
                channel_consensus * self.consensus_weight
                + stability.channel_stability.get(ch, 1.0) * self.stability_weight
                + channel_benchmark * self.benchmark_weight
                + stability.convergence_score * self.performance_weight
            )

        metrics = ConfidenceMetrics(
            overall=_clamp(overall),
            per_channel=per_channel,
            stability=stability.overall_stability,
        )
        logger.debug(f"Confidence: overall={metrics.overall:.3f}, stability={metrics.stability:.3f}")
        return metrics

    @staticmethod
    def recommendations(confidence: ConfidenceMetrics) -> list[str]:
        recs = []
        if confidence.overall < 0.5:
            recs.append("Overall confidence is low. Consider reviewing input parameters or constraints.")
        if confidence.stability < 0.6:
            recs.append("Results show low stability. Different strategies disagree on the split.")
        for ch in CHANNELS:
            if confidence.per_channel.get(ch, 1.0) < 0.4:
                recs.append(
                    f"{ch.value} allocation has low confidence. "
                    "Consider reviewing its constraints or priors."
                )
        if not recs:
            recs.append("Confidence metrics indicate reliable optimization results.")
        return recs
