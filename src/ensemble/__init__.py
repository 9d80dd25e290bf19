"""
Ensemble layer: combines strategy results and scores confidence.
"""

from ensemble.combiner import EnsembleCombiner, EnsembleResult, allocation_matrix
from ensemble.confidence import ConfidenceMetrics, ConfidenceScorer, StabilityMetrics

__all__ = [
    "ConfidenceMetrics",
    "ConfidenceScorer",
    "EnsembleCombiner",
    "EnsembleResult",
    "StabilityMetrics",
    "allocation_matrix",
]
