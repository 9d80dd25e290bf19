"""
Plausibility checks of allocations against benchmark expectations.
"""

from validation.benchmark import (
    BASE_ALLOCATION,
    INDUSTRY_ADJUSTMENTS,
    SIZE_ADJUSTMENTS,
    TYPICAL_RANGES,
    BenchmarkValidator,
    CompanySize,
    IndustryType,
    ValidationContext,
)

__all__ = [
    "BASE_ALLOCATION",
    "INDUSTRY_ADJUSTMENTS",
    "SIZE_ADJUSTMENTS",
    "TYPICAL_RANGES",
    "BenchmarkValidator",
    "CompanySize",
    "IndustryType",
    "ValidationContext",
]
