"""
factorlab - Cross-sectional factor research and backtesting engine.

Rolling-window factor evaluation, statistical evaluation of forward
predictive power, portfolio construction under constraints, and a
sequential backtest with transaction costs.
"""

from factorlab.backtest import BacktestEngine, BacktestResult, Ledger, PerformanceRecord
from factorlab.config import Settings, load_settings, load_settings_from_yaml
from factorlab.data import AssetIndex, Bar, BarStore, Frequency, MissingDataPolicy, Panel, Window
from factorlab.evaluation import StatisticsEngine, StatisticsReport, forward_returns, ic_series
from factorlab.exceptions import (
    ConfigurationError,
    ConsistencyViolation,
    FactorEvaluationError,
    FactorLabError,
    InsufficientDataError,
)
from factorlab.execution import CostModel, ExecutionModel, Fill
from factorlab.factors import FactorDefinition, FactorPanel, FactorRegistry, default_registry, evaluate
from factorlab.pipeline import ResearchPipeline, ResearchResult
from factorlab.portfolio import ConstraintPipeline, PortfolioConstructor

__version__ = "0.1.0"

__all__ = [
    "AssetIndex",
    "BacktestEngine",
    "BacktestResult",
    "Bar",
    "BarStore",
    "ConfigurationError",
    "ConsistencyViolation",
    "ConstraintPipeline",
    "CostModel",
    "ExecutionModel",
    "FactorDefinition",
    "FactorEvaluationError",
    "FactorLabError",
    "FactorPanel",
    "FactorRegistry",
    "Fill",
    "Frequency",
    "InsufficientDataError",
    "Ledger",
    "MissingDataPolicy",
    "Panel",
    "PerformanceRecord",
    "PortfolioConstructor",
    "ResearchPipeline",
    "ResearchResult",
    "Settings",
    "StatisticsEngine",
    "StatisticsReport",
    "Window",
    "default_registry",
    "evaluate",
    "forward_returns",
    "ic_series",
    "load_settings",
    "load_settings_from_yaml",
]
