"""
End-to-end tests for the research pipeline.

Synthetic bars flow through factor evaluation, statistics, portfolio
construction and the backtest; outputs are checked for internal consistency
and determinism.
"""

import json

import pandas as pd
import pytest

from factorlab.config.settings import load_settings
from factorlab.data.synthetic import SyntheticBarGenerator
from factorlab.exceptions import ConfigurationError
from factorlab.factors import default_registry
from factorlab.pipeline import ResearchPipeline

pytestmark = pytest.mark.integration


@pytest.fixture
def settings():
    return load_settings(
        portfolio={"max_weight": 0.3, "quantile_fraction": 0.25, "turnover_cap": 0.5},
        evaluation={"forward_horizons": [1, 5], "decay_horizons": [1, 2, 3], "primary_horizon": 1},
        backtest={"initial_capital": 500_000.0},
    )


@pytest.fixture
def store():
    return SyntheticBarGenerator(random_seed=11).generate_store(n_assets=10, n_days=90, start="2023-01-02")


@pytest.fixture
def registry():
    return default_registry.subset(["momentum", "reversal", "low_volatility"])


class TestResearchPipeline:
    """Full pipeline runs."""

    def test_single_factor_run(self, settings, store, registry):
        result = ResearchPipeline(settings, registry, run_id="run_single").run(store, factor_id="momentum")

        assert result.run_id == "run_single"
        assert result.factors.ids == ["momentum", "reversal", "low_volatility"]
        assert set(result.forward_returns) == {1, 2, 3, 5}
        assert list(result.report.ir_table().index) == result.factors.ids
        assert result.construction.n_rebalances == len(result.factors["momentum"].dates)

        backtest = result.backtest
        assert backtest.n_days == len(store.calendar)
        assert backtest.initial_capital == 500_000.0
        previous = backtest.initial_capital
        for record in backtest.records:
            assert record.equity == previous + record.pnl
            assert record.pnl == record.gross_pnl - record.costs
            previous = record.equity

        weights = result.weights.to_wide().fillna(0.0)
        assert (weights.abs() <= 0.3 + 1e-9).all().all()
        turnover = result.construction.turnover().iloc[1:]
        assert (turnover <= 0.5 + 1e-9).all()

    def test_composite_run(self, settings, store, registry):
        result = ResearchPipeline(settings, registry).run(
            store, factor_weights={"momentum": 1.0, "reversal": 0.5, "low_volatility": 0.5}
        )
        assert result.run_id.startswith("run_")
        assert result.weights.name == "weight"
        assert result.backtest.n_trades > 0

    def test_frames(self, settings, store, registry):
        result = ResearchPipeline(settings, registry).run(store, factor_id="reversal")
        frames = result.to_frames()
        assert {"factors", "ic_summary", "ir", "decay", "weights", "performance", "fills"} <= set(frames)
        assert all(isinstance(frame, pd.DataFrame) for frame in frames.values())

        summary = result.to_dict()
        assert summary["factors"] == result.factors.ids
        assert summary["summary"]["n_days"] == len(store.calendar)
        assert summary["duration_seconds"] >= 0.0

    def test_statistics_only(self, settings, store, registry):
        result = ResearchPipeline(settings, registry).run(store, backtest=False)
        assert result.construction is None
        assert result.backtest is None
        assert "performance" not in result.to_frames()

    def test_deterministic(self, settings, store, registry):
        first = ResearchPipeline(settings, registry).run(store, factor_id="momentum")
        second = ResearchPipeline(settings, registry).run(store, factor_id="momentum")
        assert first.factors.equals(second.factors)
        assert first.weights.equals(second.weights)
        pd.testing.assert_frame_equal(first.backtest.to_frame(), second.backtest.to_frame())

    def test_parallel_matches_sequential(self, settings, store, registry):
        parallel_settings = load_settings(
            **{**settings.model_dump(), "runtime": {"n_workers": 3, "executor": "thread"}}
        )
        sequential = ResearchPipeline(settings, registry).run(store, factor_id="momentum")
        parallel = ResearchPipeline(parallel_settings, registry).run(store, factor_id="momentum")
        assert parallel.factors.equals(sequential.factors)
        pd.testing.assert_frame_equal(parallel.report.ir_table(), sequential.report.ir_table())
        pd.testing.assert_frame_equal(parallel.backtest.to_frame(), sequential.backtest.to_frame())

    def test_next_open_run(self, store, registry):
        settings = load_settings(
            portfolio={"max_weight": 0.5},
            execution={"fill_price": "next_open"},
            evaluation={"forward_horizons": [1], "decay_horizons": [1], "primary_horizon": 1},
        )
        result = ResearchPipeline(settings, registry).run(store, factor_id="momentum")
        first_rebalance = result.weights.dates[0]
        assert min(f.date for f in result.backtest.fills) > first_rebalance
        assert result.backtest.dropped_orders == 1

    def test_logging_settings_applied(self, store, registry, capsys):
        settings = load_settings(
            logging={"level": "info", "json_format": True},
            evaluation={"forward_horizons": [1], "decay_horizons": [1], "primary_horizon": 1},
        )
        ResearchPipeline(settings, registry, run_id="run_logged").run(store, backtest=False)

        lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        events = [json.loads(line) for line in lines]
        started = [e for e in events if e["event"] == "Pipeline started"]
        assert len(started) == 1
        assert started[0]["run_id"] == "run_logged"
        assert started[0]["factors"] == 3
        assert any(e["event"] == "Pipeline completed" for e in events)

    def test_logging_level_filters(self, store, registry, capsys):
        settings = load_settings(
            logging={"level": "warning"},
            evaluation={"forward_horizons": [1], "decay_horizons": [1], "primary_horizon": 1},
        )
        ResearchPipeline(settings, registry).run(store, backtest=False)
        assert "Pipeline started" not in capsys.readouterr().out

    def test_unknown_factor_aborts(self, settings, store, registry):
        with pytest.raises(ConfigurationError):
            ResearchPipeline(settings, registry).run(store, factor_id="nonexistent")
