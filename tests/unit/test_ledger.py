"""
Tests for the backtest Ledger (factorlab/backtest/ledger.py).
"""

import pandas as pd
import pytest

from factorlab.backtest.ledger import Ledger
from factorlab.exceptions import ConsistencyViolation
from factorlab.execution.simulator import Fill, Side

WHEN = pd.Timestamp("2024-01-02")


def _fill(asset, quantity, price, cost=0.0):
    return Fill(
        date=WHEN,
        asset=asset,
        quantity=quantity,
        price=price,
        notional=quantity * price,
        slippage_cost=cost,
        spread_cost=0.0,
        side=Side.BUY if quantity > 0 else Side.SELL,
    )


class TestLedger:
    """Test cash, positions and marks."""

    def test_apply_fills(self):
        ledger = Ledger(1_000.0)
        charged = ledger.apply_fills([_fill(0, 10.0, 50.0, cost=1.0)])
        assert charged == 1.0
        assert ledger.cash == pytest.approx(1_000.0 - 500.0 - 1.0)
        assert ledger.positions() == {0: 10.0}
        assert ledger.equity == pytest.approx(999.0)

    def test_closed_position_removed(self):
        ledger = Ledger(1_000.0)
        ledger.apply_fills([_fill(0, 10.0, 50.0), _fill(0, -10.0, 55.0)])
        assert ledger.positions() == {}
        assert ledger.cash == pytest.approx(1_050.0)

    def test_positions_are_copies(self):
        ledger = Ledger(1_000.0)
        ledger.apply_fills([_fill(0, 1.0, 10.0)])
        ledger.positions()[0] = 99.0
        assert ledger.positions() == {0: 1.0}

    def test_mark_carries_last_valid_price(self):
        ledger = Ledger(1_000.0)
        ledger.apply_fills([_fill(0, 10.0, 50.0)])
        ledger.mark(pd.Series({0: 60.0}))
        assert ledger.equity == pytest.approx(1_100.0)
        ledger.mark(pd.Series({0: float("nan")}))
        assert ledger.equity == pytest.approx(1_100.0)

    def test_value_at_given_prices(self):
        ledger = Ledger(1_000.0)
        ledger.apply_fills([_fill(0, 10.0, 50.0)])
        assert ledger.value({0: 40.0}) == pytest.approx(900.0)
        assert ledger.value({1: 40.0}) == pytest.approx(1_000.0)

    def test_short_position_value(self):
        ledger = Ledger(1_000.0)
        ledger.apply_fills([_fill(0, -10.0, 50.0)])
        assert ledger.cash == pytest.approx(1_500.0)
        ledger.mark({0: 55.0})
        assert ledger.equity == pytest.approx(950.0)
        assert ledger.exposures().to_dict() == {0: -550.0}

    def test_snapshot(self):
        ledger = Ledger(1_000.0)
        ledger.apply_fills([_fill(3, 2.0, 100.0)])
        snapshot = ledger.snapshot()
        assert snapshot.position_values() == {3: 200.0}
        assert snapshot.equity == pytest.approx(1_000.0)

    def test_unmarked_position_raises(self):
        ledger = Ledger(1_000.0)
        ledger._positions[7] = 1.0
        with pytest.raises(ConsistencyViolation):
            ledger.value()
