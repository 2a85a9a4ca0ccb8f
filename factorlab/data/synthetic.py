"""
Synthetic Data Generation Module

Deterministic OHLCV bars for demos and tests. Closing prices follow a
geometric random walk; each asset gets its own drift so cross-sectional
factors have something to find.
"""

from typing import List, Optional

import numpy as np
import pandas as pd

from factorlab.data.model import ASSET_LEVEL, BAR_FIELDS, DATE_LEVEL
from factorlab.data.store import BarStore, MissingDataPolicy


class SyntheticBarGenerator:
    """
    Synthetic bar generator.

    Example:
        gen = SyntheticBarGenerator(random_seed=7)
        bars = gen.generate(n_assets=20, n_days=250)
        store = gen.generate_store(n_assets=20, n_days=250)
    """

    def __init__(self, random_seed: int = 42):
        """
        Initialize.

        Parameters
        ----------
        random_seed : int
            Random seed (reproducibility)
        """
        self.random_seed = random_seed
        self._rng = np.random.RandomState(random_seed)

    def reset_seed(self, seed: Optional[int] = None):
        """Reset the random seed."""
        if seed is None:
            seed = self.random_seed
        self._rng = np.random.RandomState(seed)

    def calendar(self, n_days: int, start: str = "2020-01-01") -> pd.DatetimeIndex:
        """Business-day calendar of ``n_days`` sessions."""
        return pd.bdate_range(start=start, periods=n_days)

    def generate(
        self,
        n_assets: int = 10,
        n_days: int = 252,
        start: str = "2020-01-01",
        drift: float = 0.0003,
        volatility: float = 0.02,
        missing_rate: float = 0.0,
        symbols: Optional[List[str]] = None,
    ) -> pd.DataFrame:
        """
        Generate a long bar table.

        Parameters
        ----------
        n_assets : int
            Number of assets
        n_days : int
            Number of sessions
        start : str
            First session
        drift : float
            Mean daily log return (asset drifts are spread around it)
        volatility : float
            Daily log-return volatility
        missing_rate : float
            Probability that a bar's fields are NaN
        symbols : list of str, optional
            Asset symbols (AssetIds are used when omitted)

        Returns
        -------
        pd.DataFrame
            Columns: date, asset, open, high, low, close, volume
        """
        dates = self.calendar(n_days, start)
        asset_drifts = drift + self._rng.normal(0.0, abs(drift) + 1e-4, size=n_assets)

        frames = []
        for i in range(n_assets):
            log_returns = self._rng.normal(asset_drifts[i], volatility, size=n_days)
            close = 100.0 * np.exp(np.cumsum(log_returns))
            gap = self._rng.normal(0.0, volatility / 4, size=n_days)
            open_ = close * np.exp(-log_returns + gap)
            spread = np.abs(self._rng.normal(0.0, volatility / 2, size=n_days))
            high = np.maximum(open_, close) * (1.0 + spread)
            low = np.minimum(open_, close) * (1.0 - spread)
            volume = self._rng.lognormal(mean=13.0, sigma=0.3, size=n_days)

            frame = pd.DataFrame(
                {
                    DATE_LEVEL: dates,
                    ASSET_LEVEL: symbols[i] if symbols else i,
                    "open": open_,
                    "high": high,
                    "low": low,
                    "close": close,
                    "volume": volume,
                }
            )
            if missing_rate > 0:
                holes = self._rng.rand(n_days) < missing_rate
                frame.loc[holes, list(BAR_FIELDS)] = np.nan
            frames.append(frame)

        return pd.concat(frames, ignore_index=True)

    def generate_store(
        self,
        n_assets: int = 10,
        n_days: int = 252,
        start: str = "2020-01-01",
        policy: MissingDataPolicy = MissingDataPolicy.DROP,
        **kwargs,
    ) -> BarStore:
        """Generate bars and load them into a BarStore on a business-day calendar."""
        bars = self.generate(n_assets=n_assets, n_days=n_days, start=start, **kwargs)
        return BarStore.from_frame(bars, calendar=self.calendar(n_days, start), policy=policy)

