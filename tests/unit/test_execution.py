"""
Tests for transaction costs and the execution simulator (factorlab/execution).

Tests:
1. Slippage and half-spread cost components
2. Target weights to fills from flat and held positions
3. Closing untargeted assets, unpriced assets, noise trades
"""

import logging

import numpy as np
import pandas as pd
import pytest

from factorlab.config.settings import ExecutionConfig, FillPrice
from factorlab.execution.costs import CostBreakdown, CostModel
from factorlab.execution.simulator import ExecutionModel, Side

WHEN = pd.Timestamp("2024-01-02")


@pytest.fixture
def free_model():
    return ExecutionModel(ExecutionConfig(slippage_k=0.0, half_spread_bps=0.0))


class TestCostModel:
    """Test CostModel."""

    def test_components(self):
        model = CostModel(ExecutionConfig(slippage_k=0.0005, half_spread_bps=5.0))
        breakdown = model.cost(-10_000.0)
        assert breakdown.slippage == pytest.approx(5.0)
        assert breakdown.spread == pytest.approx(5.0)
        assert breakdown.total == pytest.approx(10.0)

    def test_free(self):
        model = CostModel(ExecutionConfig(slippage_k=0.0, half_spread_bps=0.0))
        assert model.is_free
        assert model.cost(1_000.0).total == 0.0

    def test_breakdown_addition(self):
        total = CostBreakdown(1.0, 2.0) + CostBreakdown(0.5, 0.25)
        assert total.to_dict() == {"slippage": 1.5, "spread": 2.25, "total": 3.75}


class TestExecutionModel:
    """Test ExecutionModel.apply."""

    def test_fill_price_field(self):
        assert ExecutionModel().fill_price_field == "close"
        deferred = ExecutionModel(ExecutionConfig(fill_price=FillPrice.NEXT_OPEN))
        assert deferred.fill_price_field == "open"
        assert deferred.defers_orders

    def test_buy_from_flat(self, free_model):
        prices = pd.Series({0: 10.0, 1: 20.0})
        result = free_model.apply({}, pd.Series({0: 0.5, 1: 0.5}), prices, 1_000.0, WHEN)

        assert [f.asset for f in result.fills] == [0, 1]
        assert result.fills[0].quantity == pytest.approx(50.0)
        assert result.fills[1].quantity == pytest.approx(25.0)
        assert all(f.side is Side.BUY for f in result.fills)
        assert result.new_positions == pytest.approx({0: 50.0, 1: 25.0})
        assert result.traded_notional == pytest.approx(1_000.0)
        assert result.costs.total == 0.0

    def test_untargeted_asset_closed(self, free_model):
        prices = pd.Series({0: 10.0, 1: 20.0})
        result = free_model.apply({0: 50.0, 1: 25.0}, pd.Series({1: 1.0}), prices, 1_000.0, WHEN)

        closing = [f for f in result.fills if f.asset == 0][0]
        assert closing.quantity == pytest.approx(-50.0)
        assert closing.side is Side.SELL
        assert 0 not in result.new_positions
        assert result.new_positions[1] == pytest.approx(50.0)

    def test_unpriced_asset_keeps_position(self, free_model, caplog):
        prices = pd.Series({0: np.nan, 1: 20.0})
        with caplog.at_level(logging.WARNING):
            result = free_model.apply({0: 50.0}, pd.Series({0: 0.0, 1: 0.5}), prices, 1_000.0, WHEN)

        assert result.unpriced == [0]
        assert result.new_positions[0] == 50.0
        assert [f.asset for f in result.fills] == [1]
        assert "No valid price" in caplog.text

    def test_non_positive_price_is_unpriced(self, free_model):
        result = free_model.apply({}, pd.Series({0: 1.0}), pd.Series({0: 0.0}), 1_000.0, WHEN)
        assert result.fills == []
        assert result.unpriced == [0]

    def test_no_trade_at_target(self, free_model):
        prices = pd.Series({0: 10.0})
        result = free_model.apply({0: 50.0}, pd.Series({0: 0.5}), prices, 1_000.0, WHEN)
        assert result.n_fills == 0
        assert result.new_positions == {0: 50.0}

    def test_costs_charged_on_notional(self):
        model = ExecutionModel(ExecutionConfig(slippage_k=0.001, half_spread_bps=10.0))
        result = model.apply({}, pd.Series({0: 1.0}), pd.Series({0: 100.0}), 10_000.0, WHEN)
        fill = result.fills[0]
        assert fill.price == 100.0
        assert fill.notional == pytest.approx(10_000.0)
        assert fill.slippage_cost == pytest.approx(10.0)
        assert fill.spread_cost == pytest.approx(10.0)
        assert result.costs.total == pytest.approx(fill.total_cost)

    def test_short_target(self, free_model):
        result = free_model.apply({}, pd.Series({0: -0.5}), pd.Series({0: 10.0}), 1_000.0, WHEN)
        assert result.fills[0].quantity == pytest.approx(-50.0)
        assert result.fills[0].side is Side.SELL
        assert result.net_notional == pytest.approx(-500.0)
