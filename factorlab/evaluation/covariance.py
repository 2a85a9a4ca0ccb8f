"""
Factor Covariance

Sample covariance across factors of a per-date statistic (factor returns or
IC). Rows with any missing factor are dropped, the remaining series are
centered, and C = X'X / (n - 1) is symmetrized as (C + C') / 2, which makes
the result symmetric positive semi-definite by construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from factorlab.exceptions import InsufficientDataError

MIN_COMPLETE_ROWS = 2


@dataclass
class CovarianceResult:
    """Covariance estimation result.

    Attributes:
        covariance: Covariance matrix
        correlation: Correlation matrix (NaN where a factor has zero variance)
        effective_samples: Complete rows used
    """

    covariance: pd.DataFrame
    correlation: pd.DataFrame
    effective_samples: int

    @property
    def is_symmetric(self) -> bool:
        values = self.covariance.to_numpy()
        return bool(np.array_equal(values, values.T))

    @property
    def is_positive_semidefinite(self) -> bool:
        try:
            eigenvalues = np.linalg.eigvalsh(self.covariance.to_numpy())
        except np.linalg.LinAlgError:
            return False
        scale = max(1.0, float(np.abs(eigenvalues).max(initial=0.0)))
        return bool(np.all(eigenvalues >= -1e-12 * scale))

    def to_dict(self) -> dict[str, Any]:
        return {
            "covariance": self.covariance.to_dict(),
            "correlation": self.correlation.to_dict(),
            "effective_samples": self.effective_samples,
        }


def factor_covariance(series: pd.DataFrame) -> CovarianceResult:
    """
    Complete-case sample covariance of factor series.

    Args:
        series: Date-indexed frame, one column per factor

    Raises:
        InsufficientDataError: Fewer than 2 complete rows
    """
    complete = series.dropna(how="any")
    n = len(complete)
    if n < MIN_COMPLETE_ROWS:
        raise InsufficientDataError("factor_covariance", MIN_COMPLETE_ROWS, n)

    values = complete.to_numpy(dtype=float)
    centered = values - values.mean(axis=0)
    cov = centered.T @ centered / (n - 1)
    cov = (cov + cov.T) / 2.0

    std = np.sqrt(np.diag(cov))
    with np.errstate(divide="ignore", invalid="ignore"):
        corr = cov / np.outer(std, std)
    corr[~np.isfinite(corr)] = np.nan
    np.fill_diagonal(corr, np.where(std > 0, 1.0, np.nan))

    columns = complete.columns
    return CovarianceResult(
        covariance=pd.DataFrame(cov, index=columns, columns=columns),
        correlation=pd.DataFrame(corr, index=columns, columns=columns),
        effective_samples=n,
    )
