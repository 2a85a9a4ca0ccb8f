"""Portfolio construction: signal transforms, weighting and constraints."""

from factorlab.portfolio.constraints import (
    ConstraintAdjustment,
    ConstraintPipeline,
    ConstraintResult,
    ConstraintType,
)
from factorlab.portfolio.constructor import ConstructionResult, PortfolioConstructor
from factorlab.portfolio.transforms import (
    combine_signals,
    composite_panel,
    neutralize,
    rank_transform,
    transform_signal,
    zscore_transform,
)
from factorlab.portfolio.weighting import compute_weights, realized_volatility, select_quantile

__all__ = [
    "ConstraintAdjustment",
    "ConstraintPipeline",
    "ConstraintResult",
    "ConstraintType",
    "ConstructionResult",
    "PortfolioConstructor",
    "combine_signals",
    "composite_panel",
    "compute_weights",
    "neutralize",
    "rank_transform",
    "realized_volatility",
    "select_quantile",
    "transform_signal",
    "zscore_transform",
]
