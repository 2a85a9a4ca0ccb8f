"""
Ledger - Single owner of cash, positions and last known marks.

A Ledger belongs to exactly one backtest run. Positions are fractional
quantities keyed by asset; marks are the last valid price seen for each asset
(fill prices and closes), so an asset without a bar on some session is still
valued at its last known close.

Usage:
    ledger = Ledger(1_000_000.0)
    ledger.apply_fills(result.fills)
    ledger.mark(store.prices_on(when))
    ledger.equity
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from factorlab.data.model import AssetId
from factorlab.exceptions import ConsistencyViolation
from factorlab.execution.simulator import Fill

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time copy of the ledger state."""

    cash: float
    equity: float
    positions: Dict[AssetId, float] = field(default_factory=dict)
    marks: Dict[AssetId, float] = field(default_factory=dict)

    def position_values(self) -> Dict[AssetId, float]:
        return {asset: qty * self.marks[asset] for asset, qty in self.positions.items()}


class Ledger:
    """Cash and positions of one simulated account."""

    def __init__(self, initial_capital: float) -> None:
        self.initial_capital = float(initial_capital)
        self._cash = float(initial_capital)
        self._positions: Dict[AssetId, float] = {}
        self._marks: Dict[AssetId, float] = {}

    @property
    def cash(self) -> float:
        return self._cash

    def positions(self) -> Dict[AssetId, float]:
        """Copy of the held quantities."""
        return dict(self._positions)

    def marks(self) -> Dict[AssetId, float]:
        return dict(self._marks)

    def apply_fills(self, fills: Iterable[Fill]) -> float:
        """
        Book fills: positions move by the fill quantity, cash pays notional and costs.

        Returns:
            Total cost charged
        """
        charged = 0.0
        for fill in fills:
            quantity = self._positions.get(fill.asset, 0.0) + fill.quantity
            if quantity == 0.0:
                self._positions.pop(fill.asset, None)
            else:
                self._positions[fill.asset] = quantity
            self._cash -= fill.notional + fill.total_cost
            self._marks[fill.asset] = fill.price
            charged += fill.total_cost
        return charged

    def mark(self, prices: Mapping[AssetId, float]) -> None:
        """Update last known marks from valid prices; other marks are carried."""
        for asset, price in prices.items():
            if price is not None and np.isfinite(price) and price > 0:
                self._marks[asset] = float(price)

    def value(self, prices: Optional[Mapping[AssetId, float]] = None) -> float:
        """
        Cash plus positions valued at ``prices`` where valid, else at the last mark.

        Raises:
            ConsistencyViolation: A held asset has never been priced
        """
        total = self._cash
        for asset, quantity in self._positions.items():
            price = None
            if prices is not None:
                candidate = prices.get(asset)
                if candidate is not None and np.isfinite(candidate) and candidate > 0:
                    price = float(candidate)
            if price is None:
                price = self._marks.get(asset)
            if price is None:
                raise ConsistencyViolation("Held asset has no mark", asset=asset)
            total += quantity * price
        return total

    @property
    def equity(self) -> float:
        """Mark-to-market equity at the last known marks."""
        return self.value()

    def exposures(self) -> pd.Series:
        """Position values at the last marks, indexed by asset."""
        return pd.Series(
            {asset: qty * self._marks[asset] for asset, qty in self._positions.items()},
            dtype=float,
        )

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            cash=self._cash,
            equity=self.equity,
            positions=self.positions(),
            marks={asset: self._marks[asset] for asset in self._positions},
        )

    def __repr__(self) -> str:
        return f"Ledger(cash={self._cash:.2f}, positions={len(self._positions)})"
