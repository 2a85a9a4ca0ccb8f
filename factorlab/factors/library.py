"""
Built-in Factors - Price and volume scores over a single asset's window.

Implements:
- momentum: close[-1] / close[0] - 1
- reversal: negative short-horizon momentum
- volatility: sample std of simple returns
- low_volatility: negative volatility
- volume_trend: mean volume of the later half over the earlier half, minus 1
- range_position: last close within the window's low/high range, in [-1, +1]

Every function is module-level so it can be shipped to a process pool. A
window holding a missing or degenerate value yields None (absent cell).
"""

from typing import Optional

import numpy as np
import pandas as pd

from factorlab.data.calendar import Frequency
from factorlab.data.model import AssetId
from factorlab.data.store import Window
from factorlab.factors.base import FactorDefinition
from factorlab.factors.registry import FactorRegistry, default_registry


def momentum(asset: AssetId, date: pd.Timestamp, window: Window) -> Optional[float]:
    """Price return over the window."""
    first, last = window.close[0], window.close[-1]
    if not (np.isfinite(first) and np.isfinite(last)) or first <= 0:
        return None
    return last / first - 1.0


def reversal(asset: AssetId, date: pd.Timestamp, window: Window) -> Optional[float]:
    """Short-term reversal: losers score high."""
    value = momentum(asset, date, window)
    return None if value is None else -value


def volatility(asset: AssetId, date: pd.Timestamp, window: Window) -> Optional[float]:
    """Sample standard deviation of simple close-to-close returns."""
    if window.length < 3:
        return None
    close = window.close
    if not np.all(np.isfinite(close)) or np.any(close <= 0):
        return None
    return float(np.std(window.returns(), ddof=1))


def low_volatility(asset: AssetId, date: pd.Timestamp, window: Window) -> Optional[float]:
    """Negative volatility: calm assets score high."""
    value = volatility(asset, date, window)
    return None if value is None else -value


def volume_trend(asset: AssetId, date: pd.Timestamp, window: Window) -> Optional[float]:
    """Relative change of mean volume between the two halves of the window."""
    volume = window.volume
    if volume.shape[0] < 2 or not np.all(np.isfinite(volume)):
        return None
    half = volume.shape[0] // 2
    earlier = volume[:half].mean()
    later = volume[half:].mean()
    if earlier <= 0:
        return None
    return later / earlier - 1.0


def range_position(asset: AssetId, date: pd.Timestamp, window: Window) -> Optional[float]:
    """Where the last close sits between the window low (-1) and high (+1)."""
    high = window.high
    low = window.low
    last = window.close[-1]
    if not (np.all(np.isfinite(high)) and np.all(np.isfinite(low)) and np.isfinite(last)):
        return None
    top = high.max()
    bottom = low.min()
    span = top - bottom
    if span <= 0:
        return None
    return 2.0 * (last - bottom) / span - 1.0


BUILTIN_FACTORS = (
    FactorDefinition("momentum", 21, momentum, Frequency.DAILY, "20-session price momentum"),
    FactorDefinition("reversal", 6, reversal, Frequency.DAILY, "5-session short-term reversal"),
    FactorDefinition("volatility", 21, volatility, Frequency.DAILY, "20-session realized volatility"),
    FactorDefinition("low_volatility", 21, low_volatility, Frequency.DAILY, "Negative realized volatility"),
    FactorDefinition("volume_trend", 20, volume_trend, Frequency.DAILY, "Volume trend across the window"),
    FactorDefinition("range_position", 20, range_position, Frequency.DAILY, "Close within 20-session range"),
)


def register_library(registry: FactorRegistry) -> FactorRegistry:
    """Register every built-in factor into ``registry``."""
    for definition in BUILTIN_FACTORS:
        registry.register(definition)
    return registry


register_library(default_registry)
