"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

import config
from config import MixPlanConfig, SearchConfig, SimulationConfig, get_config, load_config, set_config


@pytest.fixture(autouse=True)
def reset_global():
    yield
    config._config = None


class TestDefaults:
    """Test default values."""

    def test_defaults(self):
        """Test documented defaults."""
        cfg = MixPlanConfig()
        assert cfg.search.grid_step == 0.1
        assert cfg.simulation.runs == 800
        assert cfg.simulation.distribution == "uniform"
        assert cfg.ensemble.max_variance == 0.0625
        assert cfg.validation.concentration_limit == 0.8
        assert cfg.strategies.heuristic_confidence == 0.7
        assert cfg.cache.enabled

    def test_flat_dict(self):
        """Test dotted keys."""
        flat = MixPlanConfig().to_flat_dict()
        assert flat["simulation.runs"] == 800
        assert flat["project_name"] == "mixplan"
        assert "validation.max_allocation" in flat


class TestValidation:
    """Test invalid settings are rejected."""

    @pytest.mark.parametrize("step", [0.3, 0.0, 2.0])
    def test_grid_step(self, step):
        """Test grid steps must divide 1."""
        with pytest.raises(ValidationError):
            SearchConfig(grid_step=step)

    def test_grid_step_accepted(self):
        """Test quarter steps are fine."""
        assert SearchConfig(grid_step=0.25).grid_step == 0.25

    @pytest.mark.parametrize("runs", [99, 5001])
    def test_runs_bounds(self, runs):
        """Test Monte Carlo runs stay in [100, 5000]."""
        with pytest.raises(ValidationError):
            SimulationConfig(runs=runs)

    def test_unknown_distribution(self):
        """Test distribution is a closed set."""
        with pytest.raises(ValidationError):
            SimulationConfig(distribution="normal")


class TestYaml:
    """Test YAML round trips."""

    def test_round_trip(self, tmp_path):
        """Test to_yaml then from_yaml preserves values."""
        cfg = MixPlanConfig(simulation=SimulationConfig(runs=1200, seed=3))
        path = tmp_path / "config.yaml"
        cfg.to_yaml(path)
        loaded = MixPlanConfig.from_yaml(path)
        assert loaded.simulation.runs == 1200
        assert loaded.simulation.seed == 3
        assert loaded.model_dump() == cfg.model_dump()

    def test_partial_file(self, tmp_path):
        """Test missing sections fall back to defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("search:\n  grid_step: 0.05\n")
        cfg = MixPlanConfig.from_yaml(path)
        assert cfg.search.grid_step == 0.05
        assert cfg.simulation.runs == 800

    def test_empty_file(self, tmp_path):
        """Test an empty file gives defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert MixPlanConfig.from_yaml(path).model_dump() == MixPlanConfig().model_dump()


class TestGlobal:
    """Test the global config helpers."""

    def test_get_creates_default(self):
        """Test lazy default creation."""
        assert get_config().project_name == "mixplan"
        assert get_config() is get_config()

    def test_set(self):
        """Test overriding the global instance."""
        custom = MixPlanConfig(environment="test")
        set_config(custom)
        assert get_config() is custom

    def test_load_from_path(self, tmp_path):
        """Test load_config reads the given file."""
        path = tmp_path / "custom.yaml"
        path.write_text("environment: staging\n")
        assert load_config(path).environment == "staging"
        assert get_config().environment == "staging"

    def test_load_without_file(self, tmp_path, monkeypatch):
        """Test defaults when no standard config file exists."""
        monkeypatch.chdir(tmp_path)
        assert load_config().environment == "development"
