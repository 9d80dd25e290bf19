"""
Ensemble combiner -- fuses allocations from several strategies into
one confidence-weighted recommendation.

Each strategy (grid search, gradient, Bayesian, heuristic, ...) hands
in an ``AlgorithmResult``.  The combiner measures how much they agree,
flags results that sit far from the pack, and averages the allocations
with confidence weights.

Outliers are reported, not dropped: they still contribute to both the
final allocation and the weighted performance.

Inputs come from semi-trusted strategies, so non-finite values are
recovered locally: a NaN share drops that channel for that result, and
an infinite confidence becomes a large finite weight.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
from loguru import logger

from core.contracts import (
    ALLOCATION_TOLERANCE,
    CHANNELS,
    AlgorithmResult,
    Allocation,
    ConsensusMetrics,
    Severity,
    ValidationWarning,
)
from core.exceptions import EmptyInputError


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class EnsembleResult:
    """Combined output of several allocation strategies."""

    final_allocation: Allocation
    consensus: ConsensusMetrics
    weighted_performance: float
    outliers: list[AlgorithmResult] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    weights: dict[str, float] = field(default_factory=dict)
    deviation_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_allocation": self.final_allocation.to_dict(),
            "consensus": self.consensus.model_dump(mode="json"),
            "weighted_performance": self.weighted_performance,
            "outliers": [o.name for o in self.outliers],
            "warnings": [w.to_dict() for w in self.warnings],
            "weights": dict(self.weights),
            "deviation_scores": dict(self.deviation_scores),
        }


def _labels(results: Sequence[AlgorithmResult]) -> list[str]:
    """Result names, suffixed where two strategies share a name."""
    seen: dict[str, int] = {}
    labels = []
    for r in results:
        seen[r.name] = seen.get(r.name, 0) + 1
        labels.append(r.name if seen[r.name] == 1 else f"{r.name}#{seen[r.name]}")
    return labels


def allocation_matrix(results: Sequence[AlgorithmResult]) -> np.ndarray:
    """``(n_results, n_channels)`` shares; missing or non-finite values are NaN."""
    rows = []
    for r in results:
        row = []
        for ch in CHANNELS:
            try:
                value = float(r.allocation.get(ch.value, np.nan))
            except (TypeError, ValueError):
                value = np.nan
            row.append(value if np.isfinite(value) else np.nan)
        rows.append(row)
    return np.array(rows, dtype=float)


# ---------------------------------------------------------------------------
# Combiner
# ---------------------------------------------------------------------------

class EnsembleCombiner:
    """
    Confidence-weighted fusion of strategy results.

    Usage::

        combiner = EnsembleCombiner()
        ensemble = combiner.combine([grid_result, gradient_result, heuristic_result])
        ensemble.final_allocation
    """

    def __init__(
        self,
        max_variance: float = 0.0625,
        outlier_multiple: float = 2.0,
        min_outlier_deviation: float = 0.02,
        low_consensus_threshold: float = 0.5,
        variance_threshold: float = 0.05,
        max_weight: float = 1e6,
    ):
        self.max_variance = max_variance
        self.outlier_multiple = outlier_multiple
        self.min_outlier_deviation = min_outlier_deviation
        self.low_consensus_threshold = low_consensus_threshold
        self.variance_threshold = variance_threshold
        self.max_weight = max_weight

    def combine(self, results: Sequence[AlgorithmResult]) -> EnsembleResult:
        """
        Fuse strategy results.

        Args:
            results: One or more strategy results.

        Returns:
            EnsembleResult with the weighted allocation, consensus
            metrics, outliers and warnings.

        Raises:
            EmptyInputError: ``results`` is empty.
        """
        results = list(results)
        if not results:
            raise EmptyInputError("Cannot combine an empty list of algorithm results")

        labels = _labels(results)
        matrix = allocation_matrix(results)
        n_bad = int(np.isnan(matrix).sum())
        if n_bad:
            logger.warning(f"Ignoring {n_bad} non-finite allocation value(s) across {len(results)} results")

        consensus_variance = self.channel_variance(matrix)
        deviations = self.deviation_scores(matrix)
        outlier_idx = self.detect_outliers(deviations)
        outliers = [results[i] for i in outlier_idx]

        consensus = ConsensusMetrics(
            agreement=self.agreement(consensus_variance, len(results)),
            variance={ch: float(v) for ch, v in zip(CHANNELS, consensus_variance)},
            outlier_count=len(outliers),
        )

        weights = self.weights(results)
        final = self.weighted_allocation(matrix, weights, results)
        performance = self.weighted_performance(results, weights)
        warnings = self.build_warnings(consensus, [labels[i] for i in outlier_idx])

        total_weight = weights.sum()
        logger.info(
            f"Ensemble of {len(results)} results: agreement={consensus.agreement:.3f}, "
            f"outliers={len(outliers)}, warnings={len(warnings)}"
        )

        return EnsembleResult(
            final_allocation=final,
            consensus=consensus,
            weighted_performance=performance,
            outliers=outliers,
            warnings=warnings,
            weights={label: float(w / total_weight) for label, w in zip(labels, weights)},
            deviation_scores={label: float(d) for label, d in zip(labels, deviations)},
        )

    # -- consensus ------------------------------------------------------------

    @staticmethod
    def channel_variance(matrix: np.ndarray) -> np.ndarray:
        """Population variance per channel over the finite values."""
        variance = np.zeros(matrix.shape[1])
        for j in range(matrix.shape[1]):
            column = matrix[:, j]
            column = column[np.isfinite(column)]
            if len(column) > 1:
                variance[j] = float(np.var(column))
        return variance

    def agreement(self, variance: np.ndarray, n_results: int) -> float:
        if n_results == 1:
            return 1.0
        normalised = float(variance.mean()) / self.max_variance
        return float(min(1.0, max(0.0, 1.0 - normalised)))

    # -- outliers -------------------------------------------------------------

    @staticmethod
    def deviation_scores(matrix: np.ndarray) -> np.ndarray:
        """Mean absolute per-channel distance of each result from the centroid."""
        finite = np.isfinite(matrix)
        counts = finite.sum(axis=0)
        sums = np.where(finite, matrix, 0.0).sum(axis=0)
        centroid = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)

        distance = np.where(finite, np.abs(matrix - centroid), 0.0)
        per_row = finite.sum(axis=1)
        return np.divide(distance.sum(axis=1), per_row, out=np.zeros(len(matrix)), where=per_row > 0)

    def detect_outliers(self, deviations: np.ndarray) -> list[int]:
        """Indices of results far from the pack; needs at least three results."""
        if len(deviations) < 3:
            return []
        median = float(np.median(deviations))
        cutoff = max(self.outlier_multiple * median, self.min_outlier_deviation)
        return [i for i, d in enumerate(deviations) if d > cutoff]

    # -- weighting ------------------------------------------------------------

    def weights(self, results: Sequence[AlgorithmResult]) -> np.ndarray:
        """Non-negative confidence weights; equal weights when none is positive."""
        raw = []
        for r in results:
            c = float(r.confidence)
            if np.isnan(c):
                c = 0.0
            elif np.isinf(c):
                c = self.max_weight if c > 0 else 0.0
            raw.append(min(max(c, 0.0), self.max_weight))
        weights = np.array(raw, dtype=float)
        if weights.sum() <= 0:
            logger.debug("No positive confidence; falling back to equal weights")
            return np.ones(len(results))
        return weights

    def weighted_allocation(
        self,
        matrix: np.ndarray,
        weights: np.ndarray,
        results: Sequence[AlgorithmResult],
    ) -> Allocation:
        complete = np.all(np.isfinite(matrix), axis=1)
        has_values = np.any(np.isfinite(matrix), axis=1)
        if has_values.sum() == 1 and complete[has_values].all():
            only = int(np.flatnonzero(has_values)[0])
            shares = matrix[only]
            if np.all(shares >= 0) and abs(shares.sum() - 1.0) <= ALLOCATION_TOLERANCE:
                return Allocation.from_array(shares)
            return self._normalised(shares, f"single usable result '{results[only].name}'")

        combined = np.zeros(matrix.shape[1])
        for j in range(matrix.shape[1]):
            finite = np.isfinite(matrix[:, j])
            w = weights[finite]
            if w.sum() > 0:
                combined[j] = float(np.dot(w, matrix[finite, j]) / w.sum())
            elif finite.any():
                combined[j] = float(matrix[finite, j].mean())
        return self._normalised(combined, "weighted average")

    @staticmethod
    def _normalised(shares: np.ndarray, source: str) -> Allocation:
        shares = np.clip(np.where(np.isfinite(shares), shares, 0.0), 0.0, None)
        total = shares.sum()
        if total <= 0:
            logger.warning(f"Ensemble {source} has no positive shares; using a uniform split")
            return Allocation.uniform()
        if abs(total - 1.0) > ALLOCATION_TOLERANCE:
            logger.debug(f"Renormalising {source} (sum={total:.6f})")
        return Allocation.from_array(shares / total)

    def weighted_performance(self, results: Sequence[AlgorithmResult], weights: np.ndarray) -> float:
        perf = np.array([float(r.performance) for r in results])
        finite = np.isfinite(perf)
        if not finite.any():
            logger.warning("No finite performance values; weighted performance set to 0")
            return 0.0
        w = weights[finite]
        if w.sum() <= 0:
            return float(perf[finite].mean())
        return float(np.dot(w, perf[finite]) / w.sum())

    # -- warnings -------------------------------------------------------------

    def build_warnings(self, consensus: ConsensusMetrics, outlier_names: list[str]) -> list[ValidationWarning]:
        warnings: list[ValidationWarning] = []

        if consensus.agreement < self.low_consensus_threshold:
            warnings.append(ValidationWarning(
                type="low_consensus",
                message=(
                    f"Low agreement between algorithms ({consensus.agreement:.1%}). "
                    "Results may be less reliable."
                ),
                severity=Severity.HIGH,
            ))

        for ch in CHANNELS:
            variance = consensus.variance.get(ch, 0.0)
            if variance > self.variance_threshold:
                warnings.append(ValidationWarning(
                    type="high_channel_variance",
                    message=f"High variance in {ch.value} allocation across algorithms ({variance:.3f}).",
                    severity=Severity.HIGH if variance > 2 * self.variance_threshold else Severity.MEDIUM,
                    channel=ch,
                ))

        for name in outlier_names:
            warnings.append(ValidationWarning(
                type="outlier_detected",
                message=f"Algorithm '{name}' deviates strongly from the other results.",
                severity=Severity.MEDIUM,
            ))

        return warnings
