"""
Weighting Schemes - Transformed signal to raw target weights.

Schemes:
- equal_long_only: equal weights on the top quantile, summing to 1
- long_short: top quantile long, bottom quantile short; each leg normalized
  to +1 / -1; legs are disjoint; fewer than 2 assets gives no positions
- risk_scaled: signal / trailing realized volatility, renormalized so that
  sum(|w|) equals the target gross exposure

Quantile membership is decided on the full cross-section. Assets are taken in
signal order, tie group by tie group, up to a target count of fraction * n.
A tie group straddling the boundary is included or excluded as a whole,
whichever leaves the count closer to the target (inclusion on an exact tie).
At least one tie group is always selected.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from factorlab.config.settings import WeightingScheme
from factorlab.data.model import AssetId, DateLike
from factorlab.data.store import BarStore
from factorlab.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def select_quantile(signal: pd.Series, fraction: float, top: bool = True) -> List[AssetId]:
    """
    Assets in the top (or bottom) ``fraction`` of the cross-section.

    Args:
        signal: Signal indexed by asset (NaN dropped)
        fraction: Target share of the cross-section, in (0, 1)
        top: Highest signals when True, lowest when False

    Returns:
        Selected assets, ordered by signal
    """
    if not 0.0 < fraction < 1.0:
        raise ConfigurationError(f"quantile fraction must be in (0, 1), got {fraction}", field="quantile_fraction")
    signal = signal.dropna()
    n = len(signal)
    if n == 0:
        return []

    ordered = signal.sort_values(ascending=not top, kind="mergesort")
    target = fraction * n

    selected: List[AssetId] = []
    for _, group in ordered.groupby(ordered.to_numpy(), sort=False):
        before = len(selected)
        after = before + len(group)
        if after <= target:
            selected.extend(group.index)
            continue
        if abs(after - target) <= abs(before - target) or before == 0:
            selected.extend(group.index)
        break
    return selected


def equal_long_only(signal: pd.Series, fraction: float) -> pd.Series:
    weights = pd.Series(0.0, index=signal.index, dtype=float)
    top = select_quantile(signal, fraction, top=True)
    if top:
        weights.loc[top] = 1.0 / len(top)
    return weights


def long_short(signal: pd.Series, fraction: float) -> pd.Series:
    weights = pd.Series(0.0, index=signal.index, dtype=float)
    if signal.dropna().size < 2:
        return weights
    longs = select_quantile(signal, fraction, top=True)
    long_set = set(longs)
    shorts = [a for a in select_quantile(signal, fraction, top=False) if a not in long_set]
    if not longs or not shorts:
        return weights
    weights.loc[longs] = 1.0 / len(longs)
    weights.loc[shorts] = -1.0 / len(shorts)
    return weights


def risk_scaled(signal: pd.Series, volatility: pd.Series, gross_exposure: float) -> pd.Series:
    """signal / volatility renormalized to ``gross_exposure``; unknown or zero vol is dropped."""
    weights = pd.Series(0.0, index=signal.index, dtype=float)
    vol = volatility.reindex(signal.index)
    usable = signal.notna() & vol.notna() & (vol > 0) & np.isfinite(vol)
    raw = signal[usable] / vol[usable]
    gross = float(raw.abs().sum())
    if gross == 0 or not np.isfinite(gross):
        return weights
    weights.loc[raw.index] = raw * (gross_exposure / gross)
    return weights


def realized_volatility(
    store: BarStore,
    assets: List[AssetId],
    when: DateLike,
    lookback: int,
) -> pd.Series:
    """
    Sample std of daily simple returns over ``lookback`` returns ending at ``when``.

    Assets without ``lookback + 1`` bars, or with missing closes, are omitted.
    """
    values = {}
    for asset in assets:
        window = store.window(asset, when, lookback + 1)
        if window is None:
            continue
        returns = window.returns()
        if not np.all(np.isfinite(returns)):
            continue
        values[asset] = float(np.std(returns, ddof=1))
    return pd.Series(values, dtype=float, name="volatility")


def compute_weights(
    signal: pd.Series,
    scheme: Union[str, WeightingScheme] = WeightingScheme.EQUAL_LONG_ONLY,
    fraction: float = 0.2,
    gross_exposure: float = 1.0,
    volatility: Optional[pd.Series] = None,
) -> pd.Series:
    """
    Raw target weights for one cross-section (zeros for unselected assets).

    Raises:
        ConfigurationError: risk_scaled without a volatility estimate
    """
    scheme = WeightingScheme(scheme)
    signal = signal.dropna()
    if scheme is WeightingScheme.EQUAL_LONG_ONLY:
        return equal_long_only(signal, fraction)
    if scheme is WeightingScheme.LONG_SHORT:
        return long_short(signal, fraction)
    if volatility is None:
        raise ConfigurationError("risk_scaled weighting requires a volatility estimate", field="weighting_scheme")
    return risk_scaled(signal, volatility, gross_exposure)
