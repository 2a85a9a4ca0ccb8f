"""
Signal Transforms - Cross-sectional normalization and neutralization.

Transforms (one date's cross-section, missing values dropped):
- rank: average ranks mapped onto [-1, +1] as 2(r-1)/(n-1) - 1; a single
  asset maps to 0
- zscore: (x - mean) / std with population std; zero std gives zeros

Neutralization (applied after the transform):
- none: unchanged
- demean: subtract the cross-sectional mean
- group: subtract the mean of the asset's group; assets without a group share
  the "_ungrouped" bucket

Composite signals average the transformed signals of several factors.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd
from scipy.stats import rankdata

from factorlab.config.settings import Neutralization, SignalTransform
from factorlab.data.model import AssetId, Panel
from factorlab.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

UNGROUPED = "_ungrouped"


def rank_transform(values: pd.Series) -> pd.Series:
    """Average ranks mapped onto [-1, +1]."""
    values = values.dropna()
    n = len(values)
    if n == 0:
        return values.astype(float)
    if n == 1:
        return pd.Series(0.0, index=values.index, name=values.name)
    ranks = rankdata(values.to_numpy(dtype=float), method="average")
    return pd.Series(2.0 * (ranks - 1.0) / (n - 1) - 1.0, index=values.index, name=values.name)


def zscore_transform(values: pd.Series) -> pd.Series:
    """(x - mean) / population std; zero std gives zeros."""
    values = values.dropna().astype(float)
    if values.empty:
        return values
    std = float(values.std(ddof=0))
    if std == 0 or not np.isfinite(std) or np.ptp(values.to_numpy()) == 0:
        return pd.Series(0.0, index=values.index, name=values.name)
    return (values - values.mean()) / std


def neutralize(
    signal: pd.Series,
    mode: Union[str, Neutralization] = Neutralization.NONE,
    groups: Optional[Mapping[AssetId, str]] = None,
) -> pd.Series:
    """Remove the cross-sectional (or per-group) mean from ``signal``."""
    mode = Neutralization(mode)
    if mode is Neutralization.NONE or signal.empty:
        return signal
    if mode is Neutralization.DEMEAN:
        return signal - signal.mean()

    if groups is None:
        raise ConfigurationError("Group neutralization requires an asset->group map", field="groups")
    labels = pd.Series(
        [groups.get(asset, UNGROUPED) for asset in signal.index], index=signal.index
    )
    return signal - signal.groupby(labels).transform("mean")


def transform_signal(
    values: pd.Series,
    method: Union[str, SignalTransform] = SignalTransform.RANK,
    neutralization: Union[str, Neutralization] = Neutralization.NONE,
    groups: Optional[Mapping[AssetId, str]] = None,
) -> pd.Series:
    """
    Transform and neutralize one cross-section of factor values.

    Args:
        values: Factor values indexed by asset
        method: rank or zscore
        neutralization: none, demean or group
        groups: asset -> group label (required for group neutralization)

    Returns:
        Transformed signal indexed by asset (missing inputs dropped)
    """
    method = SignalTransform(method)
    if method is SignalTransform.RANK:
        signal = rank_transform(values)
    else:
        signal = zscore_transform(values)
    return neutralize(signal, neutralization, groups)


def combine_signals(
    sections: Mapping[str, pd.Series],
    weights: Optional[Mapping[str, float]] = None,
    method: Union[str, SignalTransform] = SignalTransform.RANK,
    neutralization: Union[str, Neutralization] = Neutralization.NONE,
    groups: Optional[Mapping[AssetId, str]] = None,
) -> pd.Series:
    """
    Weighted average of transformed signals from several factors.

    Each asset averages over the factors that score it, with weights
    renormalized to the factors present. The composite is then neutralized.
    """
    if not sections:
        return pd.Series(dtype=float)
    weights = dict(weights) if weights is not None else {fid: 1.0 for fid in sections}
    unknown = set(weights) - set(sections)
    if unknown:
        raise ConfigurationError(f"Weights given for unknown factors: {sorted(unknown)}", field="weights")

    transformed = pd.DataFrame(
        {fid: transform_signal(values, method) for fid, values in sections.items() if weights.get(fid, 0.0) != 0}
    )
    if transformed.empty:
        return pd.Series(dtype=float)

    w = pd.Series({fid: weights[fid] for fid in transformed.columns}, dtype=float)
    present = transformed.notna()
    numerator = transformed.fillna(0.0).mul(w, axis=1).sum(axis=1)
    denominator = present.mul(w.abs(), axis=1).sum(axis=1)
    composite = (numerator / denominator)[denominator > 0]
    return neutralize(composite, neutralization, groups)


def composite_panel(
    factor_panels: Mapping[str, Panel],
    weights: Optional[Mapping[str, float]] = None,
    method: Union[str, SignalTransform] = SignalTransform.RANK,
    name: str = "composite",
) -> Panel:
    """Panel of composite signals over every date any factor covers."""
    dates = pd.DatetimeIndex([])
    for panel in factor_panels.values():
        dates = dates.union(panel.dates)

    records = []
    for when in dates:
        sections: Dict[str, pd.Series] = {
            fid: panel.cross_section(when) for fid, panel in factor_panels.items()
        }
        combined = combine_signals(sections, weights, method)
        records.extend((when, int(asset), float(value)) for asset, value in combined.items())

    logger.debug("Composite signal built from %d factors over %d dates", len(factor_panels), len(dates))
    return Panel.from_records(records, name=name)
