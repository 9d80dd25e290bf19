"""
Enhancement levels for the planning pipeline.

Each level decides which alternative strategies run next to the grid
baseline and how hard the Bayesian search works.

Levels:
  fast      -- gradient + heuristic
  standard  -- gradient + Bayesian + heuristic
  thorough  -- as standard, with a longer Bayesian search
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from core.exceptions import InvalidInputError


LEVELS = ("fast", "standard", "thorough")


@dataclass
class EnhancementConfig:
    """Strategy selection derived from an enhancement level."""

    level: str
    run_gradient: bool = True
    run_bayesian: bool = True
    run_heuristic: bool = True
    bayesian_iteration_factor: float = 1.0
    strategies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "run_gradient": self.run_gradient,
            "run_bayesian": self.run_bayesian,
            "run_heuristic": self.run_heuristic,
            "bayesian_iteration_factor": self.bayesian_iteration_factor,
            "strategies": self.strategies,
        }


def resolve_level(level: str = "standard") -> EnhancementConfig:
    """
    Translate a level name into a concrete ``EnhancementConfig``.

    Raises:
        InvalidInputError: unknown level name.
    """
    level = level.lower().strip()

    if level == "fast":
        cfg = EnhancementConfig(
            level=level,
            run_bayesian=False,
            strategies=["grid", "gradient", "heuristic"],
        )

    elif level == "standard":
        cfg = EnhancementConfig(
            level=level,
            strategies=["grid", "gradient", "bayesian", "heuristic"],
        )

    elif level == "thorough":
        cfg = EnhancementConfig(
            level=level,
            bayesian_iteration_factor=2.0,
            strategies=["grid", "gradient", "bayesian", "heuristic"],
        )

    else:
        raise InvalidInputError(
            f"Unknown enhancement level: '{level}'. Valid levels: {', '.join(LEVELS)}",
            field="level",
        )

    logger.debug(f"Resolved enhancement level '{level}' -> strategies={cfg.strategies}")
    return cfg
