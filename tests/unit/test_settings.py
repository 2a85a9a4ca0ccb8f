"""
Tests for configuration loading (factorlab/config/settings.py).

Tests:
1. Defaults and validation errors surfaced as ConfigurationError
2. YAML round trip and the default config file
3. Environment variable overrides
"""

import pytest
from pydantic import ValidationError

from factorlab.config.settings import (
    DEFAULT_CONFIG_PATH,
    EvaluationConfig,
    FillPrice,
    PortfolioConfig,
    Settings,
    WeightingScheme,
    load_settings,
    load_settings_from_yaml,
)
from factorlab.exceptions import ConfigurationError


class TestDefaults:
    """Test default values."""

    def test_defaults(self):
        settings = load_settings()
        assert settings.portfolio.quantile_fraction == 0.2
        assert settings.portfolio.max_weight == 0.1
        assert settings.portfolio.weighting_scheme is WeightingScheme.EQUAL_LONG_ONLY
        assert not settings.portfolio.turnover_cap_enabled
        assert settings.execution.fill_price is FillPrice.CLOSE
        assert settings.execution.half_spread_rate == pytest.approx(0.0005)
        assert settings.evaluation.forward_horizons == [1, 5, 10, 20]
        assert settings.backtest.initial_capital == 1_000_000.0
        assert settings.runtime.n_workers == 1

    def test_frozen(self):
        settings = load_settings()
        with pytest.raises(ValidationError):
            settings.portfolio.max_weight = 0.5


class TestValidation:
    """Invalid values surface as ConfigurationError."""

    @pytest.mark.parametrize("fraction", [0.0, 1.0, -0.1, 1.5])
    def test_quantile_fraction_bounds(self, fraction):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(portfolio={"quantile_fraction": fraction})
        assert "quantile_fraction" in exc_info.value.field

    def test_net_above_gross(self):
        with pytest.raises(ConfigurationError):
            load_settings(portfolio={"gross_exposure": 1.0, "net_exposure": 1.5})

    def test_unknown_scheme(self):
        with pytest.raises(ConfigurationError):
            load_settings(portfolio={"weighting_scheme": "kelly"})

    def test_negative_costs(self):
        with pytest.raises(ConfigurationError):
            load_settings(execution={"slippage_k": -0.1})

    def test_zero_workers(self):
        with pytest.raises(ConfigurationError):
            load_settings(runtime={"n_workers": 0})

    def test_primary_horizon_must_be_forward_horizon(self):
        with pytest.raises(ConfigurationError):
            load_settings(evaluation={"forward_horizons": [5, 10], "primary_horizon": 1})

    def test_horizons_sorted_and_unique(self):
        config = EvaluationConfig(forward_horizons=[5, 1, 5], primary_horizon=1)
        assert config.forward_horizons == [1, 5]

    def test_turnover_cap_zero_disabled(self):
        assert not PortfolioConfig(turnover_cap=0.0).turnover_cap_enabled
        assert PortfolioConfig(turnover_cap=0.5).turnover_cap_enabled

    def test_section_model_raises_validation_error(self):
        """Direct section construction reports pydantic errors; load_settings converts them."""
        with pytest.raises(ValidationError):
            PortfolioConfig(quantile_fraction=2.0)
        with pytest.raises(ConfigurationError):
            load_settings(portfolio={"quantile_fraction": 2.0})

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            load_settings(portfolio={"max_weight": 0.0})


class TestYamlLoading:
    """Test YAML configuration files."""

    def test_default_file_exists(self):
        assert DEFAULT_CONFIG_PATH.exists()

    def test_load_default(self):
        settings = load_settings_from_yaml()
        assert settings.portfolio.max_weight == 0.1
        assert settings.evaluation.decay_horizons == list(range(1, 21))

    def test_overrides(self):
        settings = load_settings_from_yaml(portfolio={"max_weight": 0.25})
        assert settings.portfolio.max_weight == 0.25
        assert settings.portfolio.quantile_fraction == 0.2

    def test_roundtrip(self, tmp_path):
        path = tmp_path / "config.yaml"
        original = load_settings(
            portfolio={"weighting_scheme": "long_short", "turnover_cap": 0.4},
            execution={"fill_price": "next_open"},
        )
        original.to_yaml(path)
        loaded = Settings.from_yaml(path)
        assert loaded.portfolio.weighting_scheme is WeightingScheme.LONG_SHORT
        assert loaded.portfolio.turnover_cap == 0.4
        assert loaded.execution.fill_price is FillPrice.NEXT_OPEN

    def test_invalid_file_content(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("portfolio:\n  quantile_fraction: 2.0\n")
        with pytest.raises(ConfigurationError):
            load_settings_from_yaml(path)

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings_from_yaml(tmp_path / "missing.yaml")


class TestEnvironment:
    """Test FACTORLAB_ environment overrides."""

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("FACTORLAB_PORTFOLIO__MAX_WEIGHT", "0.05")
        assert Settings().portfolio.max_weight == 0.05

    def test_env_enum(self, monkeypatch):
        monkeypatch.setenv("FACTORLAB_EXECUTION__FILL_PRICE", "next_open")
        assert Settings().execution.fill_price is FillPrice.NEXT_OPEN
