"""
Transaction Cost Model

Two components, both charged against the trader on every fill and reported
separately from the fill price:
- slippage: k * |trade value|
- half spread: half_spread_bps / 10^4 * |trade value|
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from factorlab.config.settings import ExecutionConfig


@dataclass(frozen=True)
class CostBreakdown:
    """Transaction costs split by component (always >= 0)."""

    slippage: float = 0.0
    spread: float = 0.0

    @property
    def total(self) -> float:
        return self.slippage + self.spread

    def __add__(self, other: "CostBreakdown") -> "CostBreakdown":
        return CostBreakdown(
            slippage=self.slippage + other.slippage,
            spread=self.spread + other.spread,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"slippage": self.slippage, "spread": self.spread, "total": self.total}


class CostModel:
    """
    Linear slippage plus half-spread cost.

    Example:
        model = CostModel(ExecutionConfig(slippage_k=0.0005, half_spread_bps=5))
        model.cost(10_000.0).total   # 5.0 + 5.0
    """

    def __init__(self, config: Optional[ExecutionConfig] = None) -> None:
        self.config = config or ExecutionConfig()

    def slippage_cost(self, trade_value: float) -> float:
        return self.config.slippage_k * abs(trade_value)

    def spread_cost(self, trade_value: float) -> float:
        return self.config.half_spread_rate * abs(trade_value)

    def cost(self, trade_value: float) -> CostBreakdown:
        """Cost of a trade with signed value ``trade_value``."""
        return CostBreakdown(
            slippage=self.slippage_cost(trade_value),
            spread=self.spread_cost(trade_value),
        )

    @property
    def is_free(self) -> bool:
        return self.config.slippage_k == 0 and self.config.half_spread_bps == 0
