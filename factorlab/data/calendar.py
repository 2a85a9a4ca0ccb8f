"""
Evaluation Calendar Utilities

A factor (or a rebalance schedule) with a non-daily frequency is active only
on the last session of each period, plus the first session of the calendar so
that an initial cross-section always exists.

- daily: every session
- weekly: last session of each ISO week
- monthly: last session of each month
- quarterly: last session of each quarter
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, List, Sequence

import numpy as np
import pandas as pd


class Frequency(str, Enum):
    """Evaluation frequency of a factor."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @classmethod
    def from_string(cls, value: "str | Frequency") -> "Frequency":
        """Get a Frequency from its string value (case-insensitive)."""
        if isinstance(value, Frequency):
            return value
        value_lower = str(value).lower()
        for member in cls:
            if member.value == value_lower:
                return member
        raise ValueError(f"Unknown frequency: {value}")


def _week_key(ts: pd.Timestamp) -> tuple:
    iso = ts.isocalendar()
    return (iso[0], iso[1])


def _month_key(ts: pd.Timestamp) -> tuple:
    return (ts.year, ts.month)


def _quarter_key(ts: pd.Timestamp) -> tuple:
    return (ts.year, (ts.month - 1) // 3 + 1)


_PERIOD_KEYS: dict[Frequency, Callable[[pd.Timestamp], tuple]] = {
    Frequency.WEEKLY: _week_key,
    Frequency.MONTHLY: _month_key,
    Frequency.QUARTERLY: _quarter_key,
}


def evaluation_mask(dates: Sequence[pd.Timestamp], frequency: "str | Frequency") -> np.ndarray:
    """
    Boolean mask of active sessions for a frequency.

    Args:
        dates: Ascending session dates
        frequency: daily, weekly, monthly or quarterly

    Returns:
        np.ndarray: (n_dates,) boolean array
    """
    n_days = len(dates)
    if n_days == 0:
        return np.array([], dtype=bool)

    freq = Frequency.from_string(frequency)
    if freq is Frequency.DAILY:
        return np.ones(n_days, dtype=bool)

    key = _PERIOD_KEYS[freq]
    stamps = [pd.Timestamp(d) for d in dates]
    mask = np.zeros(n_days, dtype=bool)
    for i in range(n_days - 1):
        mask[i] = key(stamps[i]) != key(stamps[i + 1])
    mask[-1] = True
    # First session is always active (initial cross-section)
    mask[0] = True
    return mask


def evaluation_dates(
    dates: Sequence[pd.Timestamp], frequency: "str | Frequency"
) -> List[pd.Timestamp]:
    """Sessions on which a factor with the given frequency is evaluated."""
    mask = evaluation_mask(dates, frequency)
    return [pd.Timestamp(d) for d, active in zip(dates, mask) if active]
