"""
Execution Simulator - Target weights to fills against current positions.

For each asset in the union of held and targeted assets:
    target quantity = weight * equity / price   (fractional quantities)
    trade           = target quantity - held quantity

Held assets absent from the target are closed. An asset without a valid
positive price is not traded and keeps its position. Every fill is charged
slippage and half spread on |notional|; costs never move the fill price.
No partial fills.

Usage:
    model = ExecutionModel(settings.execution)
    result = model.apply(positions, target_weights, prices, equity, date)
    result.fills
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from factorlab.config.settings import ExecutionConfig, FillPrice
from factorlab.data.model import AssetId
from factorlab.execution.costs import CostBreakdown, CostModel

logger = logging.getLogger(__name__)

# Relative size below which a trade is treated as rounding noise
QUANTITY_EPSILON = 1e-12


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class Fill:
    """
    One executed trade.

    Attributes:
        date: Session the fill settled on
        asset: Asset traded
        quantity: Signed quantity (positive buys, negative sells)
        price: Fill price
        notional: quantity * price (signed)
        slippage_cost: Slippage charged (>= 0)
        spread_cost: Half spread charged (>= 0)
        side: BUY or SELL
    """

    date: pd.Timestamp
    asset: AssetId
    quantity: float
    price: float
    notional: float
    slippage_cost: float
    spread_cost: float
    side: Side

    @property
    def total_cost(self) -> float:
        return self.slippage_cost + self.spread_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "asset": self.asset,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "notional": self.notional,
            "slippage_cost": self.slippage_cost,
            "spread_cost": self.spread_cost,
            "total_cost": self.total_cost,
        }


@dataclass
class ExecutionResult:
    """Fills of one rebalance, their aggregate cost and the post-trade positions."""

    fills: List[Fill] = field(default_factory=list)
    costs: CostBreakdown = field(default_factory=CostBreakdown)
    new_positions: Dict[AssetId, float] = field(default_factory=dict)
    unpriced: List[AssetId] = field(default_factory=list)

    @property
    def traded_notional(self) -> float:
        """Sum of |notional| over all fills."""
        return float(sum(abs(f.notional) for f in self.fills))

    @property
    def net_notional(self) -> float:
        """Cash spent on fills before costs (negative when net selling)."""
        return float(sum(f.notional for f in self.fills))

    @property
    def n_fills(self) -> int:
        return len(self.fills)


class ExecutionModel:
    """
    Converts target weights into fills at the configured fill price.

    Example:
        model = ExecutionModel(ExecutionConfig(slippage_k=0.0, half_spread_bps=0.0))
        result = model.apply({}, pd.Series({0: 0.5, 1: 0.5}), prices, 1_000_000.0, when)
    """

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        cost_model: Optional[CostModel] = None,
    ) -> None:
        self.config = config or ExecutionConfig()
        self.cost_model = cost_model or CostModel(self.config)

    @property
    def fill_price_field(self) -> str:
        """Bar field fills settle at ("close" or "open")."""
        return "open" if self.config.fill_price is FillPrice.NEXT_OPEN else "close"

    @property
    def defers_orders(self) -> bool:
        return self.config.fill_price is FillPrice.NEXT_OPEN

    def apply(
        self,
        prev_positions: Mapping[AssetId, float],
        target_weights: pd.Series,
        prices: pd.Series,
        equity: float,
        date: Any,
    ) -> ExecutionResult:
        """
        Trade from ``prev_positions`` to ``target_weights``.

        Args:
            prev_positions: asset -> held quantity
            target_weights: asset -> target weight (NaN treated as 0)
            prices: asset -> fill price for the session
            equity: Pre-trade equity marked at the fill prices
            date: Session the fills settle on

        Returns:
            ExecutionResult with fills sorted by asset
        """
        when = pd.Timestamp(date)
        targets = target_weights.astype(float).fillna(0.0)
        assets = sorted(set(prev_positions) | set(targets.index))

        fills: List[Fill] = []
        costs = CostBreakdown()
        new_positions: Dict[AssetId, float] = {}
        unpriced: List[AssetId] = []

        for asset in assets:
            held = float(prev_positions.get(asset, 0.0))
            weight = float(targets.get(asset, 0.0))
            price = prices.get(asset)
            if price is None or not np.isfinite(price) or price <= 0:
                if held != 0.0 or weight != 0.0:
                    unpriced.append(asset)
                if held != 0.0:
                    new_positions[asset] = held
                continue

            target_qty = weight * equity / price
            trade = target_qty - held
            if abs(trade) <= QUANTITY_EPSILON * max(abs(target_qty), abs(held)):
                if held != 0.0:
                    new_positions[asset] = held
                continue

            notional = trade * price
            breakdown = self.cost_model.cost(notional)
            fills.append(
                Fill(
                    date=when,
                    asset=asset,
                    quantity=trade,
                    price=float(price),
                    notional=notional,
                    slippage_cost=breakdown.slippage,
                    spread_cost=breakdown.spread,
                    side=Side.BUY if trade > 0 else Side.SELL,
                )
            )
            costs = costs + breakdown
            if target_qty != 0.0:
                new_positions[asset] = target_qty

        if unpriced:
            logger.warning(
                "No valid price on %s for %d assets, positions kept: %s",
                when.date(),
                len(unpriced),
                unpriced[:10],
            )

        return ExecutionResult(
            fills=fills,
            costs=costs,
            new_positions=new_positions,
            unpriced=unpriced,
        )
