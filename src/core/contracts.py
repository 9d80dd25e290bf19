"""
Canonical data contracts for mixplan.

These Pydantic models define every value that crosses a component
boundary: channel priors, planning assumptions, allocations, and the
structured results produced by the ensemble and validation stages.

Design principles:
  - The channel set is closed: google, meta, tiktok, linkedin.
  - Ranges are ``(lo, hi)`` tuples with ``lo <= hi``.
  - Allocations are fractions of the budget that sum to 1.
  - Contracts are frozen; components build new values instead of mutating.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Iterator, Mapping

import numpy as np
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from core.exceptions import InvalidInputError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Channel(str, Enum):
    GOOGLE = "google"
    META = "meta"
    TIKTOK = "tiktok"
    LINKEDIN = "linkedin"


# Stable enumeration order used by every component.
CHANNELS: tuple[Channel, ...] = tuple(Channel)


class Goal(str, Enum):
    DEMOS = "demos"
    REVENUE = "revenue"
    CAC = "cac"

    @property
    def minimize(self) -> bool:
        """True when lower outcome values are better."""
        return self is Goal.CAC


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Absolute tolerance on the sum of an allocation.
ALLOCATION_TOLERANCE = 1e-6

_METRIC_DOMAINS: dict[str, tuple[float, float]] = {
    "cpm": (1e-9, math.inf),
    "ctr": (0.0, 1.0),
    "cvr": (0.0, 1.0),
}


def _mean_std_to_range(value: Any, domain: tuple[float, float]) -> Any:
    """Convert ``{mean, std_dev}`` into ``mean +/- 2 sd`` clamped to the domain."""
    if not isinstance(value, Mapping) or "mean" not in value:
        return value
    mean = float(value["mean"])
    std_dev = float(value.get("std_dev", 0.0))
    if std_dev < 0:
        raise ValueError("std_dev must be non-negative")
    lo = max(domain[0], mean - 2 * std_dev)
    hi = min(domain[1], mean + 2 * std_dev)
    return (lo, max(lo, hi))


# ---------------------------------------------------------------------------
# Input contracts
# ---------------------------------------------------------------------------

class ChannelPrior(BaseModel):
    """Uncertainty ranges for one channel's cost and response metrics."""

    model_config = ConfigDict(frozen=True)

    cpm: tuple[float, float] = Field(description="Cost per 1000 impressions")
    ctr: tuple[float, float] = Field(description="Click-through rate")
    cvr: tuple[float, float] = Field(description="Conversion rate")

    @model_validator(mode="before")
    @classmethod
    def _accept_mean_std(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            for metric, domain in _METRIC_DOMAINS.items():
                if metric in data:
                    data[metric] = _mean_std_to_range(data[metric], domain)
        return data

    @field_validator("cpm")
    @classmethod
    def _check_cpm(cls, value: tuple[float, float]) -> tuple[float, float]:
        lo, hi = value
        if not (math.isfinite(lo) and math.isfinite(hi)) or lo <= 0 or hi <= 0:
            raise ValueError("cpm bounds must be finite and greater than 0")
        if lo > hi:
            raise ValueError(f"cpm lower bound {lo} exceeds upper bound {hi}")
        return value

    @field_validator("ctr", "cvr")
    @classmethod
    def _check_rate(cls, value: tuple[float, float], info: ValidationInfo) -> tuple[float, float]:
        lo, hi = value
        if not (0.0 <= lo <= 1.0 and 0.0 <= hi <= 1.0):
            raise ValueError(f"{info.field_name} bounds must lie in [0, 1]")
        if lo > hi:
            raise ValueError(f"{info.field_name} lower bound {lo} exceeds upper bound {hi}")
        return value

    def midpoint(self, metric: str) -> float:
        lo, hi = getattr(self, metric)
        return (lo + hi) / 2


class ChannelPriors(BaseModel):
    """Priors for all four channels. Supplied by the benchmark service."""

    model_config = ConfigDict(frozen=True)

    google: ChannelPrior
    meta: ChannelPrior
    tiktok: ChannelPrior
    linkedin: ChannelPrior

    def __getitem__(self, channel: Channel | str) -> ChannelPrior:
        return getattr(self, Channel(channel).value)

    def midpoints(self, metric: str) -> np.ndarray:
        """Midpoint of ``metric`` for every channel, in ``CHANNELS`` order."""
        return np.array([self[ch].midpoint(metric) for ch in CHANNELS])

    def bounds(self, metric: str) -> tuple[np.ndarray, np.ndarray]:
        """``(lo, hi)`` arrays of ``metric`` for every channel."""
        ranges = np.array([getattr(self[ch], metric) for ch in CHANNELS])
        return ranges[:, 0], ranges[:, 1]

    def to_dict(self) -> dict[str, dict[str, list[float]]]:
        return {
            ch.value: {m: list(getattr(self[ch], m)) for m in _METRIC_DOMAINS}
            for ch in CHANNELS
        }

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "ChannelPriors":
        """Validate raw priors, raising ``InvalidInputError`` on failure."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid channel priors: {e}", field="priors") from e


class Assumptions(BaseModel):
    """Planning goal and optional per-channel allocation bounds."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    goal: Goal
    avg_deal_size: float | None = Field(default=None, gt=0, alias="avgDealSize")
    target_cac: float | None = Field(default=None, gt=0, alias="targetCAC")
    min_pct: dict[Channel, float] = Field(default_factory=dict, alias="minPct")
    max_pct: dict[Channel, float] = Field(default_factory=dict, alias="maxPct")

    @field_validator("min_pct", "max_pct")
    @classmethod
    def _check_pct(cls, value: dict[Channel, float], info: ValidationInfo) -> dict[Channel, float]:
        for channel, pct in value.items():
            if not 0.0 <= pct <= 1.0:
                raise ValueError(f"{info.field_name}[{channel.value}]={pct} must lie in [0, 1]")
        return value

    def min_for(self, channel: Channel) -> float:
        return self.min_pct.get(channel, 0.0)

    def max_for(self, channel: Channel) -> float:
        return self.max_pct.get(channel, 1.0)

    @property
    def has_bounds(self) -> bool:
        return bool(self.min_pct or self.max_pct)

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "Assumptions":
        """Validate raw assumptions, raising ``InvalidInputError`` on failure."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid assumptions: {e}", field="assumptions") from e


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------

class Allocation(BaseModel):
    """Fractional budget split across the four channels."""

    model_config = ConfigDict(frozen=True)

    google: float = Field(ge=0)
    meta: float = Field(ge=0)
    tiktok: float = Field(ge=0)
    linkedin: float = Field(ge=0)

    @model_validator(mode="after")
    def _check_total(self) -> "Allocation":
        total = self.google + self.meta + self.tiktok + self.linkedin
        if not math.isfinite(total) or abs(total - 1.0) > ALLOCATION_TOLERANCE:
            raise ValueError(f"Allocation must sum to 1, got {total:.8f}")
        return self

    def __getitem__(self, channel: Channel | str) -> float:
        return getattr(self, Channel(channel).value)

    def items(self) -> Iterator[tuple[Channel, float]]:
        for ch in CHANNELS:
            yield ch, self[ch]

    def as_array(self) -> np.ndarray:
        return np.array([self[ch] for ch in CHANNELS], dtype=float)

    def to_dict(self) -> dict[str, float]:
        return {ch.value: self[ch] for ch in CHANNELS}

    @classmethod
    def from_array(cls, shares: np.ndarray | list[float]) -> "Allocation":
        """Build from shares in ``CHANNELS`` order (no renormalisation)."""
        values = [max(0.0, float(v)) for v in shares]
        return cls(**{ch.value: v for ch, v in zip(CHANNELS, values)})

    @classmethod
    def from_shares(cls, shares: Mapping[Any, float]) -> "Allocation":
        """Build from a channel -> share mapping, filling missing channels with 0."""
        values = {Channel(k).value: float(v) for k, v in shares.items()}
        return cls(**{ch.value: values.get(ch.value, 0.0) for ch in CHANNELS})

    @classmethod
    def uniform(cls) -> "Allocation":
        return cls.from_array([1.0 / len(CHANNELS)] * len(CHANNELS))


# ---------------------------------------------------------------------------
# Output contracts
# ---------------------------------------------------------------------------

class AlgorithmResult(BaseModel):
    """
    One strategy's recommendation.

    ``allocation`` is kept as a raw mapping: results come from several
    semi-trusted strategies and may carry non-finite values, which the
    ensemble combiner recovers from.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    allocation: dict[str, float]
    confidence: float
    performance: float

    @field_validator("allocation", mode="before")
    @classmethod
    def _unwrap_allocation(cls, value: Any) -> Any:
        if isinstance(value, Allocation):
            return value.to_dict()
        if isinstance(value, Mapping):
            return {getattr(k, "value", k): v for k, v in value.items()}
        return value


class ConsensusMetrics(BaseModel):
    """Agreement between the allocations of several strategies."""

    model_config = ConfigDict(frozen=True)

    agreement: float = Field(ge=0, le=1)
    variance: dict[Channel, float] = Field(default_factory=dict)
    outlier_count: int = Field(default=0, ge=0)


class ValidationWarning(BaseModel):
    """A single plausibility or agreement warning."""

    model_config = ConfigDict(frozen=True)

    type: str
    message: str
    severity: Severity
    channel: Channel | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class BenchmarkAnalysis(BaseModel):
    """Deviation of an allocation from its benchmark expectation."""

    model_config = ConfigDict(frozen=True)

    deviation_score: float = Field(ge=0, le=1)
    channel_deviations: dict[Channel, float] = Field(default_factory=dict)
    warnings: list[ValidationWarning] = Field(default_factory=list)
