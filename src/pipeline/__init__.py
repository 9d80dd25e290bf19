"""
Planning pipeline: orchestration, enhancement levels and result cache.
"""

from pipeline.cache import ResultCache, config_digest, fingerprint
from pipeline.modes import EnhancementConfig, resolve_level
from pipeline.runner import OptimizationPipeline, PlanResult, infer_context, infer_industry

__all__ = [
    "EnhancementConfig",
    "OptimizationPipeline",
    "PlanResult",
    "ResultCache",
    "config_digest",
    "fingerprint",
    "infer_context",
    "infer_industry",
    "resolve_level",
]
