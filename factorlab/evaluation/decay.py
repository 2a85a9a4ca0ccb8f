"""
IC Decay Curve

Mean IC as a function of the forward-return horizon: one value per horizon
per factor. A horizon with no scored dates gives a NaN cell.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from factorlab.data.model import Panel
from factorlab.data.store import BarStore
from factorlab.evaluation.ic import ICMethod, ic_series
from factorlab.evaluation.returns import forward_returns
from factorlab.exceptions import ConfigurationError


def decay_curve(
    factor_panels: Mapping[str, Panel],
    horizons: Iterable[int],
    returns: Optional[Mapping[int, Panel]] = None,
    store: Optional[BarStore] = None,
    method: Union[str, ICMethod] = ICMethod.SPEARMAN,
) -> pd.DataFrame:
    """
    Mean IC per horizon per factor.

    Args:
        factor_panels: factor_id -> factor Panel (a FactorPanel works)
        horizons: Horizons in sessions
        returns: Precomputed forward-return Panels keyed by horizon
        store: Used to compute missing horizons when ``returns`` lacks them
        method: spearman or pearson

    Returns:
        DataFrame indexed by horizon with one column per factor
    """
    horizons = sorted(set(horizons))
    available: Dict[int, Panel] = dict(returns or {})
    missing = [h for h in horizons if h not in available]
    if missing:
        if store is None:
            raise ConfigurationError(
                f"No forward returns for horizons {missing} and no store given", field="horizons"
            )
        available.update(forward_returns(store, missing))

    table: Dict[str, list] = {}
    for factor_id, panel in factor_panels.items():
        row = []
        for h in horizons:
            summary = ic_series(panel, available[h], method=method, horizon=h).summary()
            row.append(summary.mean if summary.mean is not None else np.nan)
        table[factor_id] = row

    frame = pd.DataFrame(table, index=pd.Index(horizons, name="horizon"), dtype=float)
    return frame
