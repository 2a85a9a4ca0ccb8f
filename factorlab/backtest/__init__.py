"""Backtest layer: ledger, event loop, records and summary metrics."""

from factorlab.backtest.engine import BacktestEngine, BacktestResult
from factorlab.backtest.ledger import Ledger, LedgerSnapshot
from factorlab.backtest.metrics import MetricsCalculator, PerformanceSummary
from factorlab.backtest.records import PerformanceRecord, records_to_frame

__all__ = [
    "BacktestEngine",
    "BacktestResult",
    "Ledger",
    "LedgerSnapshot",
    "MetricsCalculator",
    "PerformanceRecord",
    "PerformanceSummary",
    "records_to_frame",
]
