"""
Factor Definition - Pure scoring functions over rolling windows.

Design Principles:
- Pure function design: (asset, date, window) -> optional score
- No side effects and no access to other assets, so the (date, asset) grid
  is embarrassingly parallel
- None means "cannot score" and becomes an absent cell; NaN is kept as an
  explicit missing value
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import pandas as pd

from factorlab.data.calendar import Frequency
from factorlab.data.model import AssetId
from factorlab.data.store import Window
from factorlab.exceptions import ConfigurationError

FactorId = str
FactorFn = Callable[[AssetId, pd.Timestamp, Window], Optional[float]]


@dataclass(frozen=True)
class FactorDefinition:
    """
    Immutable description of one factor.

    Attributes:
        factor_id: Unique identifier
        lookback: Number of bars in the window handed to ``fn``
        fn: Scoring function ``(asset, date, window) -> Optional[float]``
        frequency: Evaluation frequency (daily, weekly, monthly, quarterly)
        description: Human-readable description

    Example:
        FactorDefinition(
            factor_id="momentum_20",
            lookback=21,
            fn=lambda asset, date, w: w.close[-1] / w.close[0] - 1,
        )
    """

    factor_id: FactorId
    lookback: int
    fn: FactorFn = field(compare=False)
    frequency: Frequency = Frequency.DAILY
    description: str = ""

    def __post_init__(self) -> None:
        if not self.factor_id:
            raise ConfigurationError("factor_id must be a non-empty string", field="factor_id")
        if isinstance(self.lookback, bool) or not isinstance(self.lookback, int) or self.lookback < 1:
            raise ConfigurationError(
                f"lookback must be a positive integer, got {self.lookback!r}",
                field=f"{self.factor_id}.lookback",
            )
        if not callable(self.fn):
            raise ConfigurationError("fn must be callable", field=f"{self.factor_id}.fn")
        try:
            object.__setattr__(self, "frequency", Frequency.from_string(self.frequency))
        except ValueError as err:
            raise ConfigurationError(str(err), field=f"{self.factor_id}.frequency") from None

    def score(self, asset: AssetId, date: pd.Timestamp, window: Window) -> Optional[float]:
        """Invoke the scoring function, normalizing its result to float or None."""
        value = self.fn(asset, date, window)
        if value is None:
            return None
        return float(value)
