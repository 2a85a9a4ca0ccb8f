"""
Tests for the backtest event loop (factorlab/backtest/engine.py).

Tests:
1. Accounting identities on every record
2. Zero-cost round trip and one-session target reproduction
3. Cost drag and turnover
4. next_open order deferral
5. Range and input validation
"""

import numpy as np
import pandas as pd
import pytest

from factorlab.backtest.engine import BacktestEngine
from factorlab.config.settings import PortfolioConfig, load_settings
from factorlab.data.model import Panel
from factorlab.data.store import BarStore
from factorlab.exceptions import ConfigurationError
from factorlab.factors import default_registry, evaluate
from factorlab.portfolio.constructor import PortfolioConstructor


def _weights(rows):
    return Panel.from_records(rows, name="weight")


class TestAccountingIdentities:
    """Booked equity, pnl and costs reconcile on every session."""

    @pytest.fixture
    def result(self, synthetic_store):
        factors = evaluate(default_registry.subset(["momentum"]), synthetic_store)
        weights = PortfolioConstructor(PortfolioConfig(max_weight=0.5)).construct(factors["momentum"])
        return BacktestEngine().run(synthetic_store, weights)

    def test_equity_recursion(self, result):
        previous = result.initial_capital
        for record in result.records:
            assert record.equity == previous + record.pnl
            previous = record.equity

    def test_pnl_and_costs(self, result):
        for record in result.records:
            assert record.pnl == record.gross_pnl - record.costs
            assert record.costs == record.slippage_cost + record.spread_cost
            assert record.costs >= 0.0

    def test_drawdown_and_peak(self, result):
        frame = result.to_frame()
        assert (frame["drawdown"] >= 0.0).all()
        assert (frame["peak_equity"] >= frame["equity"]).all()
        assert frame["peak_equity"].is_monotonic_increasing

    def test_costs_reconcile_with_fills(self, result):
        assert result.n_trades > 0
        assert result.total_costs == pytest.approx(sum(f.total_cost for f in result.fills))
        assert len(result.to_frame()) == len(result.records)
        assert result.equity_curve().iloc[-1] == result.final_equity


class TestBacktestEngine:
    """Test engine behavior on small stores."""

    def test_zero_cost_round_trip(self, flat_store, sessions, zero_cost_settings):
        weights = _weights(
            [(sessions[0], 0, 0.5), (sessions[0], 1, 0.5), (sessions[1], 0, 0.0), (sessions[1], 1, 0.0)]
        )
        result = BacktestEngine(zero_cost_settings).run(flat_store, weights)
        assert result.final_equity == pytest.approx(100_000.0)
        assert result.final_positions == {}
        assert result.n_trades == 4
        assert result.total_costs == 0.0

    def test_one_session_reproduces_targets(self, two_asset_store, sessions, zero_cost_settings):
        weights = _weights([(sessions[0], 0, 0.3), (sessions[0], 1, 0.7)])
        result = BacktestEngine(zero_cost_settings).run(two_asset_store, weights, start=sessions[0], end=sessions[0])
        assert result.n_days == 1
        assert result.final_positions == pytest.approx({0: 3_000.0, 1: 3_500.0})
        record = result.records[0]
        assert record.gross_exposure == pytest.approx(1.0)
        assert record.cash == pytest.approx(0.0, abs=1e-6)

    def test_positions_held_between_rebalances(self, two_asset_store, sessions, zero_cost_settings):
        weights = _weights([(sessions[0], 0, 1.0)])
        result = BacktestEngine(zero_cost_settings).run(two_asset_store, weights)
        # 10_000 shares of asset 0 ride from 10 to 14
        assert result.final_equity == pytest.approx(140_000.0)
        assert result.n_trades == 1

    def test_costs_reduce_equity(self, flat_store, sessions):
        weights = _weights([(sessions[0], 0, 0.5), (sessions[0], 1, 0.5)])
        result = BacktestEngine().run(flat_store, weights)
        first = result.records[0]
        # slippage 5 bps + half spread 5 bps on 1e6 traded
        assert first.costs == pytest.approx(1_000.0)
        assert first.gross_pnl == pytest.approx(0.0, abs=1e-6)
        assert result.final_equity == pytest.approx(999_000.0)

    def test_turnover_on_first_investment(self, flat_store, sessions, zero_cost_settings):
        weights = _weights([(sessions[0], 0, 0.5), (sessions[0], 1, 0.5)])
        result = BacktestEngine(zero_cost_settings).run(flat_store, weights)
        assert result.records[0].turnover == pytest.approx(1.0)
        assert result.records[1].turnover == 0.0
        assert result.summary().average_turnover == pytest.approx(1.0)

    def test_next_open_defers_orders(self, two_asset_store, sessions):
        settings = load_settings(
            execution={"slippage_k": 0.0, "half_spread_bps": 0.0, "fill_price": "next_open"},
            backtest={"initial_capital": 100_000.0},
        )
        weights = _weights([(sessions[1], 0, 1.0), (sessions[4], 1, 1.0)])
        result = BacktestEngine(settings).run(two_asset_store, weights)

        assert [f.date for f in result.fills] == [sessions[2]]
        assert result.fills[0].price == 12.0
        assert result.dropped_orders == 1
        assert result.records[1].n_positions == 0
        assert result.records[2].n_positions == 1

    def test_missing_bar_uses_last_mark(self, sessions, zero_cost_settings):
        closes = pd.DataFrame({0: [10.0, np.nan, 10.0, 10.0, 10.0], 1: np.full(5, 20.0)}, index=sessions)
        store = BarStore.from_closes(closes)
        weights = _weights([(sessions[0], 0, 0.5), (sessions[0], 1, 0.5)])
        result = BacktestEngine(zero_cost_settings).run(store, weights)
        assert result.records[1].equity == pytest.approx(100_000.0)
        assert result.records[1].n_positions == 2

    def test_empty_range(self, two_asset_store):
        with pytest.raises(ConfigurationError):
            BacktestEngine().run(two_asset_store, _weights([]), start="2030-01-01")

    def test_non_scalar_targets(self, two_asset_store):
        with pytest.raises(ConfigurationError):
            BacktestEngine().run(two_asset_store, two_asset_store.to_panel())

    def test_configured_date_range(self, two_asset_store, sessions):
        settings = load_settings(backtest={"start_date": "2024-01-02", "end_date": "2024-01-04"})
        result = BacktestEngine(settings).run(two_asset_store, _weights([]))
        assert result.n_days == 3
        assert result.to_frame().index[0] == sessions[1]
        assert result.fills_frame().empty
