"""Configuration package."""

from factorlab.config.settings import (
    BacktestConfig,
    EvaluationConfig,
    ExecutionConfig,
    ExecutorKind,
    FillPrice,
    LoggingConfig,
    Neutralization,
    PortfolioConfig,
    RuntimeConfig,
    Settings,
    SignalTransform,
    WeightingScheme,
    load_settings,
    load_settings_from_yaml,
)

__all__ = [
    "BacktestConfig",
    "EvaluationConfig",
    "ExecutionConfig",
    "ExecutorKind",
    "FillPrice",
    "LoggingConfig",
    "Neutralization",
    "PortfolioConfig",
    "RuntimeConfig",
    "Settings",
    "SignalTransform",
    "WeightingScheme",
    "load_settings",
    "load_settings_from_yaml",
]
