"""
Backtest Records - Dated accounting rows produced by the event loop.

One PerformanceRecord per simulated session. Accounting identities:
    equity(d) = equity(d-1) + pnl(d)
    pnl(d)    = gross_pnl(d) - costs(d)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Sequence

import pandas as pd


@dataclass(frozen=True)
class PerformanceRecord:
    """
    End-of-session portfolio state.

    Attributes:
        date: Session
        equity: Booked equity after the session
        cash: Cash after fills and costs
        pnl: Net profit of the session
        gross_pnl: Profit before transaction costs
        costs: Total transaction costs charged
        slippage_cost: Slippage component of ``costs``
        spread_cost: Half-spread component of ``costs``
        turnover: sum(|notional|) / prior equity
        traded_notional: sum(|notional|) of the session's fills
        gross_exposure: sum(|position value|) / equity
        net_exposure: sum(position value) / equity
        n_positions: Non-zero positions held at the close
        peak_equity: Running maximum of equity
        drawdown: 1 - equity / peak_equity (>= 0)
    """

    date: pd.Timestamp
    equity: float
    cash: float
    pnl: float
    gross_pnl: float
    costs: float
    slippage_cost: float
    spread_cost: float
    turnover: float
    traded_notional: float
    gross_exposure: float
    net_exposure: float
    n_positions: int
    peak_equity: float
    drawdown: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def daily_return(self) -> float:
        """pnl relative to the previous session's equity."""
        previous = self.equity - self.pnl
        return self.pnl / previous if previous != 0 else float("nan")


RECORD_COLUMNS: List[str] = [f.name for f in fields(PerformanceRecord)]


def records_to_frame(records: Sequence[PerformanceRecord]) -> pd.DataFrame:
    """Date-indexed table of records (columns in declaration order)."""
    if not records:
        return pd.DataFrame(columns=RECORD_COLUMNS).set_index("date")
    frame = pd.DataFrame([r.to_dict() for r in records], columns=RECORD_COLUMNS)
    return frame.set_index("date")
