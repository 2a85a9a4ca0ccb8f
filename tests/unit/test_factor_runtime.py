"""
Tests for factor definitions, the registry and the rolling-window runtime.

Tests:
1. Registry registration, decorator, freezing and validation
2. Built-in factors on hand-computed windows
3. Runtime cell semantics (absent, NaN, failure)
4. Parallel evaluation equals sequential evaluation
"""

import numpy as np
import pandas as pd
import pytest

from factorlab.config.settings import RuntimeConfig
from factorlab.data.calendar import Frequency
from factorlab.exceptions import ConfigurationError, ConsistencyViolation, FactorEvaluationError
from factorlab.factors import default_registry
from factorlab.factors.base import FactorDefinition
from factorlab.factors.library import BUILTIN_FACTORS, momentum, range_position, volatility
from factorlab.factors.registry import FactorRegistry
from factorlab.factors.runtime import FactorPanel, FactorRunner, evaluate


def _raising(asset, date, window):
    raise RuntimeError("boom")


def _nan_for_asset_one(asset, date, window):
    return float("nan") if asset == 1 else window.close[-1]


def _none_for_asset_one(asset, date, window):
    return None if asset == 1 else window.close[-1]


class TestFactorDefinition:
    """Test FactorDefinition validation."""

    def test_negative_lookback(self):
        with pytest.raises(ConfigurationError):
            FactorDefinition("bad", -1, momentum)

    def test_zero_lookback(self):
        with pytest.raises(ConfigurationError):
            FactorDefinition("bad", 0, momentum)

    def test_unknown_frequency(self):
        with pytest.raises(ConfigurationError):
            FactorDefinition("bad", 3, momentum, frequency="hourly")

    def test_frequency_coerced(self):
        definition = FactorDefinition("ok", 3, momentum, frequency="weekly")
        assert definition.frequency is Frequency.WEEKLY

    def test_not_callable(self):
        with pytest.raises(ConfigurationError):
            FactorDefinition("bad", 3, "momentum")


class TestFactorRegistry:
    """Test FactorRegistry."""

    def test_register_and_get(self):
        registry = FactorRegistry()
        registry.register(FactorDefinition("mom", 5, momentum))
        assert "mom" in registry
        assert registry.get("mom").lookback == 5
        assert registry.max_lookback == 5

    def test_duplicate_id(self):
        registry = FactorRegistry([FactorDefinition("mom", 5, momentum)])
        with pytest.raises(ConfigurationError):
            registry.register(FactorDefinition("mom", 10, momentum))

    def test_decorator(self):
        registry = FactorRegistry()

        @registry.factor("last_close", lookback=1)
        def last_close(asset, date, window):
            """Most recent close."""
            return window.close[-1]

        assert registry.get("last_close").description == "Most recent close."
        assert registry.ids() == ["last_close"]

    def test_frozen_rejects_mutation(self):
        registry = FactorRegistry([FactorDefinition("mom", 5, momentum)]).freeze()
        with pytest.raises(ConfigurationError):
            registry.register(FactorDefinition("other", 5, momentum))
        with pytest.raises(ConfigurationError):
            registry.unregister("mom")

    def test_unknown_factor(self):
        with pytest.raises(ConfigurationError):
            FactorRegistry().get("missing")

    def test_subset(self):
        subset = default_registry.subset(["momentum", "reversal"])
        assert subset.ids() == ["momentum", "reversal"]
        assert not subset.frozen

    def test_default_registry_has_library(self):
        assert set(d.factor_id for d in BUILTIN_FACTORS) <= set(default_registry.ids())


class TestBuiltinFactors:
    """Test built-in scoring functions."""

    def test_momentum(self, two_asset_store):
        window = two_asset_store.window(0, "2024-01-05", 5)
        assert momentum(0, window.end_date, window) == pytest.approx(0.4)

    def test_volatility_sample_std(self, two_asset_store):
        window = two_asset_store.window(1, "2024-01-05", 5)
        expected = np.std(np.diff([20.0, 19.0, 18.0, 17.0, 16.0]) / [20.0, 19.0, 18.0, 17.0], ddof=1)
        assert volatility(1, window.end_date, window) == pytest.approx(expected)

    def test_range_position_degenerate_range(self, flat_store):
        window = flat_store.window(0, "2024-01-05", 3)
        assert range_position(0, window.end_date, window) is None


class TestFactorRuntime:
    """Test FactorRunner cell semantics."""

    def test_two_asset_momentum_lookback_three(self, two_asset_store, sessions):
        """5 bars, lookback 3: the first two dates are absent, then window returns."""
        registry = FactorRegistry([FactorDefinition("mom3", 3, momentum)])
        panel = evaluate(registry, two_asset_store)["mom3"]

        assert list(panel.dates) == list(sessions[2:])
        assert panel.get(sessions[0], 0) is None
        assert panel.get(sessions[2], 0) == pytest.approx(12.0 / 10.0 - 1.0)
        assert panel.get(sessions[2], 1) == pytest.approx(18.0 / 20.0 - 1.0)
        assert panel.get(sessions[3], 0) == pytest.approx(13.0 / 11.0 - 1.0)
        assert panel.get(sessions[4], 1) == pytest.approx(16.0 / 18.0 - 1.0)
        assert len(panel) == 6

    def test_output_equals_direct_evaluation(self, synthetic_store):
        registry = default_registry.subset(["momentum", "volatility"])
        factors = evaluate(registry, synthetic_store)
        when = synthetic_store.calendar[40]
        for asset in synthetic_store.assets[:4]:
            window = synthetic_store.window(asset, when, 21)
            assert factors["momentum"].get(when, asset) == pytest.approx(momentum(asset, when, window))
            assert factors["volatility"].get(when, asset) == pytest.approx(volatility(asset, when, window))

    def test_none_is_absent_nan_is_explicit(self, two_asset_store, sessions):
        registry = FactorRegistry(
            [
                FactorDefinition("nan_one", 1, _nan_for_asset_one),
                FactorDefinition("none_one", 1, _none_for_asset_one),
            ]
        )
        factors = evaluate(registry, two_asset_store)
        assert (sessions[0], 1) in factors["nan_one"]
        assert np.isnan(factors["nan_one"].get(sessions[0], 1))
        assert (sessions[0], 1) not in factors["none_one"]
        assert factors.coverage()["nan_one"] == 5

    def test_raising_factor(self, two_asset_store, sessions):
        registry = FactorRegistry([FactorDefinition("boom", 2, _raising)])
        with pytest.raises(FactorEvaluationError) as exc_info:
            evaluate(registry, two_asset_store)
        err = exc_info.value
        assert err.factor == "boom"
        assert err.asset == 0
        assert err.date == sessions[1]
        assert "RuntimeError" in err.original_error
        assert isinstance(err, ConsistencyViolation)

    def test_weekly_frequency(self, synthetic_store):
        registry = FactorRegistry([FactorDefinition("mom_w", 5, momentum, frequency="weekly")])
        panel = evaluate(registry, synthetic_store)["mom_w"]
        daily = evaluate(FactorRegistry([FactorDefinition("mom_d", 5, momentum)]), synthetic_store)["mom_d"]
        assert len(panel.dates) < len(daily.dates)
        assert all(d.dayofweek == 4 or d == synthetic_store.calendar[0] for d in panel.dates)

    def test_date_off_calendar(self, two_asset_store):
        registry = FactorRegistry([FactorDefinition("mom3", 3, momentum)])
        with pytest.raises(ConsistencyViolation):
            evaluate(registry, two_asset_store, dates=["2024-01-06"])

    def test_unknown_asset(self, two_asset_store):
        registry = FactorRegistry([FactorDefinition("mom3", 3, momentum)])
        with pytest.raises(ConfigurationError):
            evaluate(registry, two_asset_store, assets=[0, 9])

    def test_date_and_asset_subset(self, two_asset_store, sessions):
        registry = FactorRegistry([FactorDefinition("mom3", 3, momentum)])
        panel = evaluate(registry, two_asset_store, dates=[sessions[4]], assets=[1])["mom3"]
        assert len(panel) == 1
        assert panel.assets == [1]

    def test_factor_panel_mapping(self, two_asset_store):
        registry = FactorRegistry([FactorDefinition("mom3", 3, momentum)])
        factors = evaluate(registry, two_asset_store)
        assert isinstance(factors, FactorPanel)
        assert "mom3" in factors and "other" not in factors
        with pytest.raises(ConfigurationError):
            factors.factor("other")
        frame = factors.to_frame()
        assert list(frame.columns) == ["date", "asset", "factor", "value"]
        assert len(frame) == 6

    def test_invalid_worker_count(self, two_asset_store):
        with pytest.raises(ConfigurationError):
            evaluate(FactorRegistry(), two_asset_store, n_workers=0)


class TestParallelRuntime:
    """Parallel evaluation must equal sequential evaluation."""

    def test_thread_pool_equals_sequential(self, synthetic_store):
        registry = default_registry.subset(["momentum", "reversal", "range_position"])
        sequential = FactorRunner(RuntimeConfig(n_workers=1)).evaluate(registry, synthetic_store)
        parallel = FactorRunner(RuntimeConfig(n_workers=4, executor="thread")).evaluate(
            registry, synthetic_store
        )
        assert parallel.equals(sequential)

    def test_process_pool_equals_sequential(self, generator):
        store = generator.generate_store(n_assets=3, n_days=30)
        registry = default_registry.subset(["momentum"])
        sequential = evaluate(registry, store)
        parallel = evaluate(registry, store, n_workers=2, executor="process")
        assert parallel.equals(sequential)
        pd.testing.assert_frame_equal(parallel.to_frame(), sequential.to_frame())
