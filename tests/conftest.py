"""Shared fixtures for mixplan tests."""

import pytest

from config import MixPlanConfig, SimulationConfig, StrategyConfig
from core.contracts import Assumptions, ChannelPriors


def make_priors(**overrides) -> ChannelPriors:
    """
    Priors with known cost per acquisition at the midpoints.

    CPA = cpm / (1000 * ctr * cvr): google 4, meta 5, tiktok 8.33, linkedin 10.
    """
    data = {
        "google": {"cpm": (8.0, 12.0), "ctr": (0.04, 0.06), "cvr": (0.04, 0.06)},
        "meta": {"cpm": (8.0, 12.0), "ctr": (0.03, 0.05), "cvr": (0.04, 0.06)},
        "tiktok": {"cpm": (8.0, 12.0), "ctr": (0.02, 0.04), "cvr": (0.03, 0.05)},
        "linkedin": {"cpm": (15.0, 25.0), "ctr": (0.03, 0.05), "cvr": (0.04, 0.06)},
    }
    for channel, fields in overrides.items():
        data[channel] = {**data[channel], **fields}
    return ChannelPriors.model_validate(data)


def identical_priors() -> ChannelPriors:
    same = {"cpm": (10.0, 10.0), "ctr": (0.02, 0.02), "cvr": (0.05, 0.05)}
    return ChannelPriors.model_validate({ch: same for ch in ("google", "meta", "tiktok", "linkedin")})


@pytest.fixture
def priors():
    return make_priors()


@pytest.fixture
def flat_priors():
    return identical_priors()


@pytest.fixture
def demos():
    return Assumptions(goal="demos")


@pytest.fixture
def cac():
    return Assumptions(goal="cac")


@pytest.fixture
def revenue():
    return Assumptions(goal="revenue", avg_deal_size=500)


@pytest.fixture
def seeded_config():
    return MixPlanConfig(
        simulation=SimulationConfig(runs=200, seed=7),
        strategies=StrategyConfig(seed=7, bayesian_max_iterations=10, bayesian_candidates=64),
    )
