"""
Backtest Engine - Sequential event loop over target weights.

Simulates trading a target-weight Panel through the execution model, one
calendar session at a time in ascending order. Per session:

1. read the session's targets (absent -> hold current positions)
2. trade toward them at the fill price, sized on pre-trade equity marked
   at that price
3. cash pays notional plus costs
4. mark positions to the close (last known close carried for assets without
   a bar) to get equity
5. append a PerformanceRecord

With ``fill_price = next_open`` the orders of a session fill at the next
session's open; orders still pending after the last session are dropped.

The loop is single-threaded: each session depends on the previous ledger.

Usage:
    engine = BacktestEngine(settings)
    result = engine.run(store, weights)
    result.summary()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from factorlab.backtest.ledger import Ledger
from factorlab.backtest.metrics import MetricsCalculator, PerformanceSummary
from factorlab.backtest.records import PerformanceRecord, records_to_frame
from factorlab.config.settings import Settings
from factorlab.data.model import AssetId, DateLike, Panel
from factorlab.data.store import BarStore
from factorlab.exceptions import ConfigurationError, ConsistencyViolation
from factorlab.execution.costs import CostBreakdown
from factorlab.execution.simulator import ExecutionModel, Fill
from factorlab.utils.logger import TimedOperation, get_logger


@dataclass
class BacktestResult:
    """
    Backtest output: dated records, every fill and the final positions.

    Example:
        >>> result = engine.run(store, weights)
        >>> result.to_frame()["equity"].iloc[-1]
        >>> result.summary().sharpe_ratio
    """

    initial_capital: float
    records: List[PerformanceRecord] = field(default_factory=list)
    fills: List[Fill] = field(default_factory=list)
    final_positions: Dict[AssetId, float] = field(default_factory=dict)
    dropped_orders: int = 0

    @property
    def final_equity(self) -> float:
        return self.records[-1].equity if self.records else self.initial_capital

    @property
    def n_days(self) -> int:
        return len(self.records)

    @property
    def n_trades(self) -> int:
        return len(self.fills)

    @property
    def total_costs(self) -> float:
        return float(sum(r.costs for r in self.records))

    def equity_curve(self) -> pd.Series:
        return self.to_frame()["equity"]

    def to_frame(self) -> pd.DataFrame:
        """One row per session, indexed by date."""
        return records_to_frame(self.records)

    def fills_frame(self) -> pd.DataFrame:
        columns = [
            "date", "asset", "side", "quantity", "price",
            "notional", "slippage_cost", "spread_cost", "total_cost",
        ]
        return pd.DataFrame([f.to_dict() for f in self.fills], columns=columns)

    def summary(self, annualization_factor: int = 252, risk_free_rate: float = 0.0) -> PerformanceSummary:
        calc = MetricsCalculator(annualization_factor=annualization_factor, risk_free_rate=risk_free_rate)
        return calc.calculate(self.records, self.initial_capital)

    def __repr__(self) -> str:
        return (
            f"BacktestResult(days={self.n_days}, trades={self.n_trades}, "
            f"final_equity={self.final_equity:,.2f})"
        )


class BacktestEngine:
    """
    Sequential backtest of a target-weight Panel.

    Example:
        engine = BacktestEngine(load_settings(execution={"fill_price": "next_open"}))
        result = engine.run(store, weights, start="2021-01-04")
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self.execution = ExecutionModel(self.settings.execution)
        self._logger = get_logger(__name__)

    def run(
        self,
        store: BarStore,
        target_weights: Panel,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> BacktestResult:
        """
        Simulate trading ``target_weights`` over the store's calendar.

        Args:
            store: Bar source (fill prices and closes)
            target_weights: Scalar Panel of target weights (dates absent = hold)
            start: First session (default: configured start_date or calendar start)
            end: Last session (default: configured end_date or calendar end)

        Raises:
            ConfigurationError: Empty simulation range
            ConsistencyViolation: Booked equity drifted from mark-to-market
        """
        cfg = self.settings.backtest
        start = start if start is not None else cfg.start_date
        end = end if end is not None else cfg.end_date
        sessions = store.sessions_between(start, end)
        if len(sessions) == 0:
            raise ConfigurationError(f"No sessions between {start} and {end}", field="start_date")

        targets = self._targets_by_date(target_weights, sessions)
        price_field = self.execution.fill_price_field
        defer = self.execution.defers_orders

        ledger = Ledger(cfg.initial_capital)
        result = BacktestResult(initial_capital=cfg.initial_capital)
        prev_equity = ledger.equity
        peak = prev_equity
        pending: Optional[pd.Series] = None

        with TimedOperation("backtest", self._logger):
            for when in sessions:
                if defer:
                    order, pending = pending, targets.get(when)
                else:
                    order = targets.get(when)

                costs = CostBreakdown()
                traded_notional = 0.0
                if order is not None:
                    prices = store.prices_on(when, price_field)
                    pre_trade_equity = ledger.value(prices)
                    execution = self.execution.apply(
                        ledger.positions(), order, prices, pre_trade_equity, when
                    )
                    ledger.apply_fills(execution.fills)
                    result.fills.extend(execution.fills)
                    costs = execution.costs
                    traded_notional = execution.traded_notional

                ledger.mark(store.prices_on(when, "close"))
                marked = ledger.equity

                gross_pnl = (marked + costs.total) - prev_equity
                pnl = gross_pnl - costs.total
                equity = prev_equity + pnl
                self._check_drift(equity, marked, when)

                peak = max(peak, equity)
                exposures = ledger.exposures()
                record = PerformanceRecord(
                    date=when,
                    equity=equity,
                    cash=ledger.cash,
                    pnl=pnl,
                    gross_pnl=gross_pnl,
                    costs=costs.total,
                    slippage_cost=costs.slippage,
                    spread_cost=costs.spread,
                    turnover=traded_notional / prev_equity if prev_equity > 0 else float("nan"),
                    traded_notional=traded_notional,
                    gross_exposure=float(exposures.abs().sum()) / equity if equity != 0 else float("nan"),
                    net_exposure=float(exposures.sum()) / equity if equity != 0 else float("nan"),
                    n_positions=int((exposures != 0).sum()),
                    peak_equity=peak,
                    drawdown=1.0 - equity / peak if peak > 0 else 0.0,
                )
                result.records.append(record)
                prev_equity = equity

        if pending is not None:
            result.dropped_orders = 1
            self._logger.debug("Order after the last session dropped", date=str(sessions[-1].date()))

        result.final_positions = ledger.positions()
        self._logger.info(
            "Backtest completed",
            sessions=len(sessions),
            rebalances=len(targets),
            fills=len(result.fills),
            final_equity=round(result.final_equity, 2),
            fill_price=self.settings.execution.fill_price.value,
        )
        return result

    def _targets_by_date(self, target_weights: Panel, sessions: pd.DatetimeIndex) -> Dict[pd.Timestamp, pd.Series]:
        if not target_weights.is_scalar:
            raise ConfigurationError("Target weights must be a scalar Panel", field="target_weights")
        in_range = target_weights.dates.intersection(sessions)
        outside = len(target_weights.dates) - len(in_range)
        if outside:
            self._logger.debug("Target dates outside the simulated sessions ignored", count=outside)
        return {when: target_weights.cross_section(when) for when in in_range}

    def _check_drift(self, booked: float, marked: float, when: pd.Timestamp) -> None:
        tolerance = self.settings.backtest.equity_tolerance * max(1.0, abs(marked))
        if not np.isfinite(booked) or abs(booked - marked) > tolerance:
            raise ConsistencyViolation(
                f"Booked equity {booked:.6f} drifted from mark-to-market {marked:.6f}",
                date=when,
            )
