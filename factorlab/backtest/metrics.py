"""Performance summary metrics over backtest records.

Daily returns are pnl(d) / equity(d-1), the first session relative to the
initial capital. Metrics that are undefined for the sample (a zero
volatility, no losing day, no drawdown) are reported as None.

Features:
- Total and annualized return (compound annual growth)
- Volatility (annualized, sample std)
- Sharpe/Sortino ratios
- Maximum drawdown (positive decimal) and Calmar ratio
- Average turnover, total costs, win rate
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional, Sequence

import numpy as np

from factorlab.backtest.records import PerformanceRecord

# Annualization factors
TRADING_DAYS_PER_YEAR = 252


@dataclass(frozen=True)
class PerformanceSummary:
    """Summary metrics of one backtest.

    Attributes:
        initial_equity: Starting capital.
        final_equity: Equity after the last session.
        n_days: Simulated sessions.
        total_return: final / initial - 1.
        annualized_return: Compound annual growth rate.
        volatility: Annualized std of daily returns.
        sharpe_ratio: Annualized mean / std of daily excess returns.
        sortino_ratio: Annualized mean / downside deviation.
        max_drawdown: Largest peak-to-trough loss as a positive decimal.
        calmar_ratio: annualized_return / max_drawdown.
        average_turnover: Mean turnover over sessions with fills.
        total_costs: Sum of transaction costs.
        win_rate: Share of sessions with positive pnl.
    """

    initial_equity: float
    final_equity: float
    n_days: int
    total_return: Optional[float]
    annualized_return: Optional[float]
    volatility: Optional[float]
    sharpe_ratio: Optional[float]
    sortino_ratio: Optional[float]
    max_drawdown: Optional[float]
    calmar_ratio: Optional[float]
    average_turnover: Optional[float]
    total_costs: float
    win_rate: Optional[float]

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsCalculator:
    """Computes a PerformanceSummary from PerformanceRecords.

    Example:
        >>> calc = MetricsCalculator()
        >>> summary = calc.calculate(result.records, initial_capital=1_000_000.0)
        >>> summary.sharpe_ratio
    """

    def __init__(
        self,
        annualization_factor: int = TRADING_DAYS_PER_YEAR,
        risk_free_rate: float = 0.0,
    ) -> None:
        self.annualization_factor = annualization_factor
        self.risk_free_rate = risk_free_rate
        self._rf_daily = risk_free_rate / annualization_factor

    def calculate(self, records: Sequence[PerformanceRecord], initial_capital: float) -> PerformanceSummary:
        if not records:
            return PerformanceSummary(
                initial_equity=initial_capital,
                final_equity=initial_capital,
                n_days=0,
                total_return=None,
                annualized_return=None,
                volatility=None,
                sharpe_ratio=None,
                sortino_ratio=None,
                max_drawdown=None,
                calmar_ratio=None,
                average_turnover=None,
                total_costs=0.0,
                win_rate=None,
            )

        equity = np.array([r.equity for r in records], dtype=np.float64)
        pnl = np.array([r.pnl for r in records], dtype=np.float64)
        previous = np.concatenate([[initial_capital], equity[:-1]])
        returns = np.divide(pnl, previous, out=np.full_like(pnl, np.nan), where=previous > 0)
        returns = returns[~np.isnan(returns)]

        total_return = float(equity[-1] / initial_capital - 1.0)
        annualized = self._annualize_return(total_return, len(records))
        max_drawdown = self._max_drawdown(equity, initial_capital)

        traded = [r.turnover for r in records if r.traded_notional > 0]

        return PerformanceSummary(
            initial_equity=initial_capital,
            final_equity=float(equity[-1]),
            n_days=len(records),
            total_return=total_return,
            annualized_return=annualized,
            volatility=self._volatility(returns),
            sharpe_ratio=self._sharpe(returns - self._rf_daily),
            sortino_ratio=self._sortino(returns - self._rf_daily),
            max_drawdown=max_drawdown,
            calmar_ratio=annualized / max_drawdown if annualized is not None and max_drawdown else None,
            average_turnover=float(np.mean(traded)) if traded else None,
            total_costs=float(sum(r.costs for r in records)),
            win_rate=float(np.mean(pnl > 0)),
        )

    def _volatility(self, returns: np.ndarray) -> Optional[float]:
        if len(returns) < 2:
            return None
        return float(np.std(returns, ddof=1) * np.sqrt(self.annualization_factor))

    def _sharpe(self, excess_returns: np.ndarray) -> Optional[float]:
        if len(excess_returns) < 2:
            return None
        std = np.std(excess_returns, ddof=1)
        if std == 0:
            return None
        return float(np.mean(excess_returns) / std * np.sqrt(self.annualization_factor))

    def _sortino(self, excess_returns: np.ndarray) -> Optional[float]:
        if len(excess_returns) < 2:
            return None
        # Downside deviation over all periods, losses only
        downside = np.minimum(excess_returns, 0.0)
        downside_dev = float(np.sqrt(np.mean(downside**2)))
        if downside_dev == 0:
            return None
        return float(np.mean(excess_returns) / downside_dev * np.sqrt(self.annualization_factor))

    @staticmethod
    def _max_drawdown(equity: np.ndarray, initial_capital: float) -> float:
        """Maximum drawdown as positive value."""
        values = np.concatenate([[initial_capital], equity])
        running_max = np.maximum.accumulate(values)
        drawdowns = (running_max - values) / running_max
        return float(np.max(drawdowns))

    def _annualize_return(self, total_return: float, n_periods: int) -> Optional[float]:
        years = n_periods / self.annualization_factor
        if years <= 0 or total_return <= -1.0:
            return None
        return float((1 + total_return) ** (1 / years) - 1)

