"""Statistical evaluation: forward returns, IC/IR, decay, regression, covariance."""

from factorlab.evaluation.covariance import CovarianceResult, factor_covariance
from factorlab.evaluation.decay import decay_curve
from factorlab.evaluation.ic import (
    ICMethod,
    ICSeries,
    ICSummary,
    cross_sectional_ic,
    ic_series,
    information_ratio,
    summarize_ic,
)
from factorlab.evaluation.regression import RegressionResult, RegressionSeries, ols, regression_series
from factorlab.evaluation.report import FactorStatistics, StatisticsEngine, StatisticsReport
from factorlab.evaluation.returns import forward_return_frame, forward_returns

__all__ = [
    "CovarianceResult",
    "FactorStatistics",
    "ICMethod",
    "ICSeries",
    "ICSummary",
    "RegressionResult",
    "RegressionSeries",
    "StatisticsEngine",
    "StatisticsReport",
    "cross_sectional_ic",
    "decay_curve",
    "factor_covariance",
    "forward_return_frame",
    "forward_returns",
    "ic_series",
    "information_ratio",
    "ols",
    "regression_series",
    "summarize_ic",
]
