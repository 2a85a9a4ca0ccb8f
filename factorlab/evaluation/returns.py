"""
Forward Returns

price_return(d, d+h) = close[d+h] / close[d] - 1, where d+h is the session h
steps later on the store calendar. Dates without h further sessions, and
assets lacking a close at either end, are absent from the result.
"""

from __future__ import annotations

from typing import Dict, Iterable

import pandas as pd

from factorlab.data.model import Panel
from factorlab.data.store import BarStore
from factorlab.exceptions import ConfigurationError


def forward_return_frame(closes: pd.DataFrame, horizon: int) -> pd.DataFrame:
    """Calendar x asset table of h-session forward returns (NaN where undefined)."""
    if horizon < 1:
        raise ConfigurationError(f"horizon must be >= 1, got {horizon}", field="horizon")
    return closes.shift(-horizon) / closes - 1.0


def forward_returns(store: BarStore, horizons: Iterable[int]) -> Dict[int, Panel]:
    """
    Forward-return Panels for each horizon.

    Args:
        store: Bar source (close prices, calendar)
        horizons: Horizons in sessions

    Returns:
        Mapping horizon -> Panel named ``fwd_{h}``
    """
    closes = store.close_frame()
    result: Dict[int, Panel] = {}
    for horizon in sorted(set(horizons)):
        frame = forward_return_frame(closes, horizon)
        result[horizon] = Panel.from_wide(frame, name=f"fwd_{horizon}")
    return result
