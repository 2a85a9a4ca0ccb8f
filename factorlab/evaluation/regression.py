"""
Cross-Sectional Regression

Per date, OLS of forward return on factor value with an intercept:

    r_i = a + b * x_i + e_i

b is the date's factor return. Standard error is homoscedastic:
se(b) = sqrt(RSS / (n - 2) / sum((x - mean(x))^2)).

Dates with fewer than 3 observations (two regressors including the
intercept, plus one) or zero factor variance are skipped and recorded.
A zero residual variance leaves the t-statistic and p-value undefined.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from factorlab.data.model import Panel
from factorlab.evaluation.ic import SKIP_INSUFFICIENT_DATA, SKIP_ZERO_VARIANCE, aligned_frame, zscore

logger = logging.getLogger(__name__)

N_REGRESSORS = 2  # intercept + factor
MIN_OBSERVATIONS = N_REGRESSORS + 1

# Residual sum of squares below this fraction of the total is an exact fit
_EXACT_FIT_RTOL = 1e-20


@dataclass(frozen=True)
class RegressionResult:
    """OLS result for one date."""

    date: pd.Timestamp
    coefficient: float
    intercept: float
    std_error: float
    t_stat: Optional[float]
    p_value: Optional[float]
    r_squared: Optional[float]
    n_obs: int
    residuals: pd.Series

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "coefficient": self.coefficient,
            "intercept": self.intercept,
            "std_error": self.std_error,
            "t_stat": self.t_stat,
            "p_value": self.p_value,
            "r_squared": self.r_squared,
            "n_obs": self.n_obs,
        }


def ols(
    factor_values: pd.Series,
    returns: pd.Series,
    when: Optional[pd.Timestamp] = None,
    standardize: bool = False,
) -> Tuple[Optional[RegressionResult], Optional[str]]:
    """
    Regress one cross-section of returns on factor values.

    Returns:
        (result, skip_reason); result is None when skip_reason is set
    """
    joined = aligned_frame(factor_values, returns)
    n = len(joined)
    if n < MIN_OBSERVATIONS:
        return None, SKIP_INSUFFICIENT_DATA

    x = joined["x"].to_numpy(dtype=float)
    y = joined["y"].to_numpy(dtype=float)
    if np.ptp(x) == 0:
        return None, SKIP_ZERO_VARIANCE
    if standardize:
        x = zscore(x)

    xc = x - x.mean()
    yc = y - y.mean()
    sxx = float(xc @ xc)
    slope = float(xc @ yc) / sxx
    intercept = float(y.mean() - slope * x.mean())

    residuals = y - intercept - slope * x
    rss = float(residuals @ residuals)
    tss = float(yc @ yc)
    dof = n - N_REGRESSORS

    exact_fit = rss == 0 or (tss > 0 and rss <= _EXACT_FIT_RTOL * tss)
    if exact_fit:
        std_error = 0.0
        t_stat = None
        p_value = None
    else:
        std_error = math.sqrt(rss / dof / sxx)
        t_stat = slope / std_error
        p_value = float(2.0 * stats.t.sf(abs(t_stat), dof))

    r_squared = None if tss == 0 else 1.0 - rss / tss

    result = RegressionResult(
        date=when,
        coefficient=slope,
        intercept=intercept,
        std_error=std_error,
        t_stat=t_stat,
        p_value=p_value,
        r_squared=r_squared,
        n_obs=n,
        residuals=pd.Series(residuals, index=joined.index, name="residual"),
    )
    return result, None


@dataclass
class RegressionSeries:
    """Per-date regressions for one factor and horizon."""

    factor_id: Optional[str]
    horizon: Optional[int]
    results: List[RegressionResult] = field(default_factory=list)
    skipped: Dict[pd.Timestamp, str] = field(default_factory=dict)

    @property
    def factor_returns(self) -> pd.Series:
        """Slope coefficient per date."""
        return pd.Series(
            [r.coefficient for r in self.results],
            index=pd.DatetimeIndex([r.date for r in self.results], name="date"),
            dtype=float,
            name=self.factor_id,
        )

    @property
    def mean_coefficient(self) -> Optional[float]:
        if not self.results:
            return None
        return float(np.mean([r.coefficient for r in self.results]))

    @property
    def fama_macbeth_t(self) -> Optional[float]:
        """t-statistic of the slope series: mean / (std / sqrt(n))."""
        coefs = np.array([r.coefficient for r in self.results], dtype=float)
        n = len(coefs)
        if n < 2:
            return None
        std = float(coefs.std(ddof=1))
        if std == 0 or np.ptp(coefs) == 0:
            return None
        return float(coefs.mean() / (std / math.sqrt(n)))

    def residuals(self) -> Panel:
        """Residuals of every regressed date as a Panel."""
        if not self.results:
            return Panel.empty(name="residual")
        pieces = {r.date: r.residuals for r in self.results}
        stacked = pd.concat(pieces, names=["date", "asset"])
        return Panel(stacked, name="residual")

    def to_frame(self) -> pd.DataFrame:
        columns = ["date", "coefficient", "intercept", "std_error", "t_stat", "p_value", "r_squared", "n_obs"]
        return pd.DataFrame([r.to_dict() for r in self.results], columns=columns)

    def __len__(self) -> int:
        return len(self.results)


def regression_series(
    factor_panel: Panel,
    return_panel: Panel,
    standardize: bool = False,
    horizon: Optional[int] = None,
) -> RegressionSeries:
    """Run ``ols`` for every date on which the factor has a cross-section."""
    series = RegressionSeries(factor_id=factor_panel.name, horizon=horizon)
    for when, section in factor_panel.groupby_date():
        result, reason = ols(section, return_panel.cross_section(when), when=when, standardize=standardize)
        if reason is not None:
            series.skipped[when] = reason
            continue
        series.results.append(result)

    if series.skipped:
        logger.debug(
            "Regression dates skipped for %s (h=%s): %d", factor_panel.name, horizon, len(series.skipped)
        )
    return series
