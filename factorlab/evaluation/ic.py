"""
Information Coefficient - Cross-sectional correlation of factor and return.

Per date, the factor values and forward returns of the assets present in both
are paired; a pair with a missing or non-finite side is dropped. Spearman
ranks both sides with average ranks for ties and then applies Pearson;
Pearson works on raw (optionally z-scored) values.

A date with fewer than 2 pairs, or with zero variance on either side, is
excluded from the series and recorded with its reason. It is never scored as
IC = 0.

IR = mean(IC) / std(IC, ddof=1); undefined (None) with fewer than 2
observations or zero variance.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import rankdata

from factorlab.data.model import Panel

logger = logging.getLogger(__name__)

MIN_IC_PAIRS = 2
SKIP_INSUFFICIENT_DATA = "insufficient_data"
SKIP_ZERO_VARIANCE = "zero_variance"


class ICMethod(str, Enum):
    """Correlation used for the information coefficient."""

    SPEARMAN = "spearman"
    PEARSON = "pearson"


def aligned_frame(factor_values: pd.Series, returns: pd.Series) -> pd.DataFrame:
    """Inner-join two asset-indexed series as columns x and y, keeping finite pairs only."""
    joined = pd.concat([factor_values.rename("x"), returns.rename("y")], axis=1, join="inner")
    finite = np.isfinite(joined.to_numpy(dtype=float)).all(axis=1)
    return joined[finite]


def align_pairs(factor_values: pd.Series, returns: pd.Series) -> Tuple[np.ndarray, np.ndarray]:
    """Inner-join two asset-indexed series and drop pairs with a missing or non-finite side."""
    joined = aligned_frame(factor_values, returns)
    return joined["x"].to_numpy(dtype=float), joined["y"].to_numpy(dtype=float)


def zscore(values: np.ndarray) -> np.ndarray:
    """(x - mean) / std with population std; zero std gives zeros."""
    std = values.std()
    if std == 0 or not np.isfinite(std):
        return np.zeros_like(values)
    return (values - values.mean()) / std


def pearson(x: np.ndarray, y: np.ndarray) -> Optional[float]:
    """Pearson correlation, or None when either side has zero variance."""
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return None
    xc = x - x.mean()
    yc = y - y.mean()
    denom = math.sqrt(float(xc @ xc) * float(yc @ yc))
    if denom == 0:
        return None
    return float(np.clip(float(xc @ yc) / denom, -1.0, 1.0))


def cross_sectional_ic(
    factor_values: pd.Series,
    returns: pd.Series,
    method: Union[str, ICMethod] = ICMethod.SPEARMAN,
    standardize: bool = False,
) -> Tuple[Optional[float], int, Optional[str]]:
    """
    IC of one cross-section.

    Returns:
        (ic, n_pairs, skip_reason) where ic is None when skip_reason is set
    """
    method = ICMethod(method)
    x, y = align_pairs(factor_values, returns)
    n = len(x)
    if n < MIN_IC_PAIRS:
        return None, n, SKIP_INSUFFICIENT_DATA
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return None, n, SKIP_ZERO_VARIANCE

    if method is ICMethod.SPEARMAN:
        x = rankdata(x, method="average")
        y = rankdata(y, method="average")
    elif standardize:
        x = zscore(x)
        y = zscore(y)

    value = pearson(x, y)
    if value is None:
        return None, n, SKIP_ZERO_VARIANCE
    return value, n, None


@dataclass(frozen=True)
class ICSummary:
    """Aggregate statistics of an IC series.

    Attributes:
        mean: Mean IC (None when empty)
        std: Sample std of IC (None with fewer than 2 observations)
        ir: mean / std (None when undefined)
        n: Number of IC observations
        hit_rate: Share of positive ICs (None when empty)
        t_stat: ir * sqrt(n) (None when ir is undefined)
    """

    mean: Optional[float]
    std: Optional[float]
    ir: Optional[float]
    n: int
    hit_rate: Optional[float]
    t_stat: Optional[float]

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            "ic_mean": self.mean,
            "ic_std": self.std,
            "ir": self.ir,
            "n": self.n,
            "hit_rate": self.hit_rate,
            "t_stat": self.t_stat,
        }


def information_ratio(ic_values: Union[pd.Series, np.ndarray]) -> Optional[float]:
    """mean / sample std of an IC series; None with n < 2 or zero variance."""
    return summarize_ic(ic_values).ir


def summarize_ic(ic_values: Union[pd.Series, np.ndarray]) -> ICSummary:
    values = np.asarray(ic_values, dtype=float)
    values = values[np.isfinite(values)]
    n = len(values)
    if n == 0:
        return ICSummary(mean=None, std=None, ir=None, n=0, hit_rate=None, t_stat=None)

    mean = float(values.mean())
    hit_rate = float((values > 0).mean())
    if n < 2:
        return ICSummary(mean=mean, std=None, ir=None, n=n, hit_rate=hit_rate, t_stat=None)

    std = float(values.std(ddof=1))
    if std == 0 or np.ptp(values) == 0:
        return ICSummary(mean=mean, std=std, ir=None, n=n, hit_rate=hit_rate, t_stat=None)

    ir = mean / std
    return ICSummary(
        mean=mean,
        std=std,
        ir=ir,
        n=n,
        hit_rate=hit_rate,
        t_stat=ir * math.sqrt(n),
    )


@dataclass
class ICSeries:
    """IC per date for one factor, method and horizon.

    Attributes:
        values: IC indexed by date (only scored dates)
        n_obs: Pair count per scored date
        skipped: Excluded dates and the reason
    """

    factor_id: Optional[str]
    method: ICMethod
    horizon: Optional[int]
    values: pd.Series
    n_obs: pd.Series
    skipped: Dict[pd.Timestamp, str] = field(default_factory=dict)

    @property
    def mean(self) -> Optional[float]:
        return self.summary().mean

    @property
    def ir(self) -> Optional[float]:
        return self.summary().ir

    def summary(self) -> ICSummary:
        return summarize_ic(self.values)

    def __len__(self) -> int:
        return len(self.values)


def ic_series(
    factor_panel: Panel,
    return_panel: Panel,
    method: Union[str, ICMethod] = ICMethod.SPEARMAN,
    standardize: bool = False,
    horizon: Optional[int] = None,
) -> ICSeries:
    """
    IC for every date on which the factor has a cross-section.

    Args:
        factor_panel: Scalar Panel of factor values
        return_panel: Scalar Panel of forward returns
        method: spearman or pearson
        standardize: Z-score both sides before Pearson
        horizon: Horizon of ``return_panel`` (recorded only)
    """
    method = ICMethod(method)
    values: Dict[pd.Timestamp, float] = {}
    counts: Dict[pd.Timestamp, int] = {}
    skipped: Dict[pd.Timestamp, str] = {}

    for when, section in factor_panel.groupby_date():
        returns = return_panel.cross_section(when)
        ic, n, reason = cross_sectional_ic(section, returns, method=method, standardize=standardize)
        if reason is not None:
            skipped[when] = reason
            continue
        values[when] = ic
        counts[when] = n

    if skipped:
        logger.debug(
            "IC dates skipped for %s (%s, h=%s): %d", factor_panel.name, method.value, horizon, len(skipped)
        )

    index = pd.DatetimeIndex(list(values.keys()), name="date")
    return ICSeries(
        factor_id=factor_panel.name,
        method=method,
        horizon=horizon,
        values=pd.Series(list(values.values()), index=index, dtype=float, name="ic"),
        n_obs=pd.Series(list(counts.values()), index=index, dtype=np.int64, name="n_obs"),
        skipped=skipped,
    )
