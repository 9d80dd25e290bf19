"""
Configuration management for mixplan.

Centralised configuration with YAML loading and sensible defaults.
The config drives every stage of the planner: grid resolution, Monte
Carlo settings, ensemble tolerances, benchmark thresholds, strategy
hyperparameters and result caching.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from simulation.monte_carlo import MAX_RUNS, MIN_RUNS


# ---------------------------------------------------------------------------
# Section configs
# ---------------------------------------------------------------------------

class SearchConfig(BaseModel):
    """Grid allocator settings."""

    grid_step: float = Field(default=0.1, gt=0, le=1, description="Grid spacing; must divide 1")
    top_k: int = Field(default=5, ge=1, description="Candidates kept for alternatives")

    @field_validator("grid_step")
    @classmethod
    def _divides_one(cls, value: float) -> float:
        units = round(1 / value)
        if abs(units * value - 1) > 1e-9:
            raise ValueError(f"grid_step {value} does not divide 1 evenly")
        return value


class SimulationConfig(BaseModel):
    """Monte Carlo settings."""

    runs: int = Field(default=800, ge=MIN_RUNS, le=MAX_RUNS)
    distribution: Literal["uniform", "triangular"] = Field(default="uniform")
    seed: int | None = Field(default=None, description="None draws fresh entropy per run")


class EnsembleConfig(BaseModel):
    """Consensus, outlier and warning tolerances for the combiner."""

    max_variance: float = Field(default=0.0625, gt=0)
    outlier_multiple: float = Field(default=2.0, gt=0)
    min_outlier_deviation: float = Field(default=0.02, ge=0)
    low_consensus_threshold: float = Field(default=0.5, ge=0, le=1)
    variance_threshold: float = Field(default=0.05, ge=0)
    max_weight: float = Field(default=1e6, gt=0)


class BenchmarkThresholds(BaseModel):
    """Strictness of the benchmark validator. All fractions of the budget."""

    deviation_warning: float = Field(default=0.15, ge=0)
    extreme_deviation: float = Field(default=0.30, ge=0)
    min_allocation: float = Field(default=0.05, ge=0, le=1)
    max_allocation: float = Field(default=0.70, ge=0, le=1)
    concentration_limit: float = Field(default=0.80, ge=0, le=1)
    active_channel_share: float = Field(default=0.05, ge=0, le=1)
    min_active_channels: int = Field(default=2, ge=1, le=4)
    range_severity_multiple: float = Field(default=1.5, gt=0)


class StrategyConfig(BaseModel):
    """Hyperparameters of the alternative allocation strategies."""

    gradient_max_iterations: int = Field(default=1000, ge=1)
    gradient_tolerance: float = Field(default=1e-9, gt=0)
    bayesian_max_iterations: int = Field(default=30, ge=0)
    bayesian_initial_points: int = Field(default=5, ge=1)
    bayesian_candidates: int = Field(default=256, ge=1)
    bayesian_length_scale: float = Field(default=0.1, gt=0)
    bayesian_kernel_variance: float = Field(default=1.0, gt=0)
    bayesian_noise_variance: float = Field(default=0.01, gt=0)
    heuristic_confidence: float = Field(default=0.7, ge=0, le=1)
    grid_confidence: float = Field(default=0.8, ge=0, le=1)
    seed: int | None = Field(default=None)


class CacheConfig(BaseModel):
    """Result cache settings."""

    enabled: bool = Field(default=True)
    max_size: int = Field(default=256, ge=1)
    ttl_seconds: int = Field(default=300, gt=0)


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

class MixPlanConfig(BaseModel):
    """Root configuration for mixplan."""

    project_name: str = Field(default="mixplan")
    environment: str = Field(default="development")

    search: SearchConfig = Field(default_factory=SearchConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)
    validation: BenchmarkThresholds = Field(default_factory=BenchmarkThresholds)
    strategies: StrategyConfig = Field(default_factory=StrategyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "MixPlanConfig":
        """Load config from a YAML file."""
        with open(Path(path)) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Write config to a YAML file."""
        with open(Path(path), "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False, sort_keys=False)

    def to_flat_dict(self) -> dict[str, Any]:
        """Dotted-key view of the config, e.g. ``simulation.runs``."""
        flat: dict[str, Any] = {}
        for key, value in self.model_dump().items():
            if isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    flat[f"{key}.{sub_key}"] = sub_value
            else:
                flat[key] = value
        return flat


# ---------------------------------------------------------------------------
# Global default
# ---------------------------------------------------------------------------

_config: MixPlanConfig | None = None


def get_config() -> MixPlanConfig:
    """Return the global config instance (creates default if needed)."""
    global _config
    if _config is None:
        _config = MixPlanConfig()
    return _config


def set_config(config: MixPlanConfig) -> None:
    """Override the global config instance."""
    global _config
    _config = config


def load_config(path: Path | str | None = None) -> MixPlanConfig:
    """
    Load config from file, falling back to standard locations, then defaults.
    """
    global _config

    if path is not None:
        _config = MixPlanConfig.from_yaml(path)
    else:
        for candidate in [Path("config.yaml"), Path("config/config.yaml")]:
            if candidate.exists():
                _config = MixPlanConfig.from_yaml(candidate)
                break
        else:
            _config = MixPlanConfig()

    return _config
