"""
Bar Store - Contiguous per-asset OHLCV buffers with zero-copy windows.

Each asset owns one float64 buffer of shape (n_rows, 5) plus its date vector.
Both are flagged read-only once the store is built; every Window handed to a
factor is a slice view into them, so rolling evaluation never reallocates.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from factorlab.data.model import (
    ASSET_LEVEL,
    BAR_FIELDS,
    DATE_LEVEL,
    AssetId,
    AssetIndex,
    Bar,
    DateLike,
    Panel,
    melt_wide,
    normalize_dates,
    normalize_timestamp,
)
from factorlab.exceptions import ConfigurationError, ConsistencyViolation

logger = logging.getLogger(__name__)

_FIELD_INDEX = {name: i for i, name in enumerate(BAR_FIELDS)}
_PRICE_COLUMNS = list(BAR_FIELDS[:4])


class MissingDataPolicy(str, Enum):
    """How NaN OHLCV fields are treated when a store is built."""

    DROP = "drop"  # Remove the bar
    FORWARD_FILL = "forward_fill"  # Carry the last valid value; leading gaps removed
    FLAG = "flag"  # Keep NaN as an explicit missing marker


class Window:
    """
    Read-only view over L consecutive bars of one asset ending at a date.

    All array attributes are views into the owning store's buffer.
    """

    __slots__ = ("asset", "_data", "_dates")

    def __init__(self, asset: AssetId, data: np.ndarray, dates: np.ndarray) -> None:
        self.asset = asset
        self._data = data
        self._dates = dates

    @property
    def open(self) -> np.ndarray:
        return self._data[:, 0]

    @property
    def high(self) -> np.ndarray:
        return self._data[:, 1]

    @property
    def low(self) -> np.ndarray:
        return self._data[:, 2]

    @property
    def close(self) -> np.ndarray:
        return self._data[:, 3]

    @property
    def volume(self) -> np.ndarray:
        return self._data[:, 4]

    @property
    def values(self) -> np.ndarray:
        """(L, 5) OHLCV view."""
        return self._data

    @property
    def dates(self) -> np.ndarray:
        return self._dates

    @property
    def length(self) -> int:
        return self._data.shape[0]

    @property
    def end_date(self) -> pd.Timestamp:
        return pd.Timestamp(self._dates[-1])

    def returns(self) -> np.ndarray:
        """Simple close-to-close returns (length L-1, newly allocated)."""
        close = self.close
        return close[1:] / close[:-1] - 1.0

    def __len__(self) -> int:
        return self.length

    def __repr__(self) -> str:
        return f"Window(asset={self.asset}, length={self.length}, end_date={self.end_date.date()})"


class AssetBuffer:
    """Dates and OHLCV rows for a single asset (both read-only)."""

    __slots__ = ("asset", "dates", "data", "_positions")

    def __init__(self, asset: AssetId, dates: np.ndarray, data: np.ndarray) -> None:
        dates = np.ascontiguousarray(dates, dtype="datetime64[ns]")
        data = np.ascontiguousarray(data, dtype=np.float64)
        dates.flags.writeable = False
        data.flags.writeable = False
        self.asset = asset
        self.dates = dates
        self.data = data
        self._positions: Dict[np.datetime64, int] = {d: i for i, d in enumerate(dates)}

    def position(self, when: pd.Timestamp) -> Optional[int]:
        return self._positions.get(np.datetime64(when, "ns"))

    def window(self, when: pd.Timestamp, length: int) -> Optional[Window]:
        end = self.position(when)
        if end is None or end + 1 < length:
            return None
        start = end + 1 - length
        return Window(self.asset, self.data[start : end + 1], self.dates[start : end + 1])

    def __len__(self) -> int:
        return self.data.shape[0]


class BarStore:
    """
    Arena of per-asset bar buffers aligned to a declared trading calendar.

    Example:
        store = BarStore.from_frame(bars, calendar=sessions, policy="forward_fill")
        window = store.window(asset=0, date="2024-03-01", length=20)
        if window is not None:
            score = window.close[-1] / window.close[0] - 1
    """

    def __init__(
        self,
        calendar: pd.DatetimeIndex,
        buffers: Dict[AssetId, AssetBuffer],
        policy: MissingDataPolicy = MissingDataPolicy.DROP,
        asset_index: Optional[AssetIndex] = None,
    ) -> None:
        self._calendar = pd.DatetimeIndex(calendar)
        self._buffers = dict(sorted(buffers.items()))
        self._policy = MissingDataPolicy(policy)
        self._asset_index = asset_index
        self._close_panel: Optional[Panel] = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        calendar: Optional[Iterable[DateLike]] = None,
        policy: Union[str, MissingDataPolicy] = MissingDataPolicy.DROP,
        asset_index: Optional[AssetIndex] = None,
    ) -> "BarStore":
        """
        Build a store from a long table with columns date, asset and OHLCV.

        Args:
            frame: Long bar table; ``asset`` may hold AssetIds or symbols
            calendar: Declared trading sessions (defaults to the dates present)
            policy: Missing-data policy (drop, forward_fill, flag)
            asset_index: Symbol mapping used when ``asset`` holds symbols

        Raises:
            ConfigurationError: Unknown policy or missing columns
            ConsistencyViolation: Duplicate bars or bars off the calendar
        """
        try:
            policy = MissingDataPolicy(policy)
        except ValueError:
            raise ConfigurationError(f"Unknown missing-data policy: {policy}", field="policy") from None

        missing = {DATE_LEVEL, ASSET_LEVEL, *BAR_FIELDS} - set(frame.columns)
        if missing:
            raise ConfigurationError(f"Bar frame is missing columns: {sorted(missing)}")

        df = frame[[DATE_LEVEL, ASSET_LEVEL, *BAR_FIELDS]].copy()
        df[DATE_LEVEL] = normalize_dates(df[DATE_LEVEL])

        if not pd.api.types.is_integer_dtype(df[ASSET_LEVEL]):
            if asset_index is None:
                asset_index = AssetIndex(sorted(df[ASSET_LEVEL].unique()))
            df[ASSET_LEVEL] = [asset_index.id_of(s) for s in df[ASSET_LEVEL]]
        df[ASSET_LEVEL] = df[ASSET_LEVEL].astype(np.int64)

        duplicated = df.duplicated(subset=[DATE_LEVEL, ASSET_LEVEL])
        if duplicated.any():
            row = df[duplicated].iloc[0]
            raise ConsistencyViolation(
                "Duplicate bar", date=row[DATE_LEVEL], asset=int(row[ASSET_LEVEL])
            )

        if calendar is None:
            sessions = pd.DatetimeIndex(df[DATE_LEVEL].unique()).sort_values()
        else:
            sessions = normalize_dates(calendar).unique().sort_values()
            off = ~df[DATE_LEVEL].isin(sessions)
            if off.any():
                row = df[off].iloc[0]
                raise ConsistencyViolation(
                    "Bar date is not a calendar session",
                    date=row[DATE_LEVEL],
                    asset=int(row[ASSET_LEVEL]),
                )

        buffers: Dict[AssetId, AssetBuffer] = {}
        for asset, group in df.groupby(ASSET_LEVEL, sort=True):
            bars = group.set_index(DATE_LEVEL)[list(BAR_FIELDS)].sort_index().astype(float)
            bars = _apply_policy(bars, sessions, policy)
            buffers[int(asset)] = AssetBuffer(int(asset), bars.index.values, bars.values)

        store = cls(sessions, buffers, policy=policy, asset_index=asset_index)
        logger.debug(
            "Bar store built: %d assets, %d sessions, policy=%s",
            len(buffers),
            len(sessions),
            policy.value,
        )
        return store

    @classmethod
    def from_panel(
        cls,
        panel: Panel,
        calendar: Optional[Iterable[DateLike]] = None,
        policy: Union[str, MissingDataPolicy] = MissingDataPolicy.DROP,
        asset_index: Optional[AssetIndex] = None,
    ) -> "BarStore":
        """Build a store from an OHLCV Panel."""
        return cls.from_frame(panel.to_frame(), calendar=calendar, policy=policy, asset_index=asset_index)

    @classmethod
    def from_bars(
        cls,
        bars: Iterable[Bar],
        calendar: Optional[Iterable[DateLike]] = None,
        policy: Union[str, MissingDataPolicy] = MissingDataPolicy.DROP,
    ) -> "BarStore":
        """Build a store from Bar records."""
        rows = [bar.to_dict() for bar in bars]
        frame = pd.DataFrame(rows, columns=[ASSET_LEVEL, DATE_LEVEL, *BAR_FIELDS])
        frame[ASSET_LEVEL] = frame[ASSET_LEVEL].astype(np.int64)
        return cls.from_frame(frame, calendar=calendar, policy=policy)

    @classmethod
    def from_closes(
        cls,
        closes: pd.DataFrame,
        policy: Union[str, MissingDataPolicy] = MissingDataPolicy.DROP,
    ) -> "BarStore":
        """
        Build a store from a date x asset table of closing prices.

        Open, high and low are set to the close and volume to 1.
        """
        frame = melt_wide(closes, "close")
        frame["open"] = frame["close"]
        frame["high"] = frame["close"]
        frame["low"] = frame["close"]
        frame["volume"] = np.where(frame["close"].isna(), np.nan, 1.0)
        return cls.from_frame(frame, calendar=closes.index, policy=policy)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def calendar(self) -> pd.DatetimeIndex:
        return self._calendar

    @property
    def assets(self) -> List[AssetId]:
        return list(self._buffers)

    @property
    def asset_index(self) -> Optional[AssetIndex]:
        return self._asset_index

    @property
    def policy(self) -> MissingDataPolicy:
        return self._policy

    def buffer(self, asset: AssetId) -> AssetBuffer:
        try:
            return self._buffers[asset]
        except KeyError:
            raise ConfigurationError(f"Unknown asset: {asset}") from None

    def has_bar(self, asset: AssetId, when: DateLike) -> bool:
        buf = self._buffers.get(asset)
        return buf is not None and buf.position(normalize_timestamp(when)) is not None

    def window(self, asset: AssetId, when: DateLike, length: int) -> Optional[Window]:
        """
        Window of ``length`` bars for ``asset`` ending at ``when``.

        Returns None (insufficient lookback) when the asset has no bar on
        ``when`` or fewer than ``length`` bars up to it.
        """
        if length < 1:
            raise ConfigurationError(f"Window length must be >= 1, got {length}", field="length")
        buf = self._buffers.get(asset)
        if buf is None:
            return None
        return buf.window(normalize_timestamp(when), length)

    def price(self, asset: AssetId, when: DateLike, field: str = "close") -> Optional[float]:
        """Field value of the asset's bar on ``when`` (None when absent or NaN)."""
        buf = self._buffers.get(asset)
        if buf is None:
            return None
        pos = buf.position(normalize_timestamp(when))
        if pos is None:
            return None
        value = float(buf.data[pos, _field_index(field)])
        return None if np.isnan(value) else value

    def prices_on(self, when: DateLike, field: str = "close") -> pd.Series:
        """Valid prices of every asset with a bar on ``when`` (indexed by asset)."""
        ts = normalize_timestamp(when)
        col = _field_index(field)
        values: Dict[AssetId, float] = {}
        for asset, buf in self._buffers.items():
            pos = buf.position(ts)
            if pos is None:
                continue
            value = buf.data[pos, col]
            if not np.isnan(value):
                values[asset] = float(value)
        return pd.Series(values, dtype=float, name=field)

    def close_panel(self) -> Panel:
        """Scalar Panel of closing prices (cached)."""
        if self._close_panel is None:
            pieces = []
            for asset, buf in self._buffers.items():
                index = pd.MultiIndex.from_arrays(
                    [pd.DatetimeIndex(buf.dates), np.full(len(buf), asset, dtype=np.int64)],
                    names=[DATE_LEVEL, ASSET_LEVEL],
                )
                pieces.append(pd.Series(buf.data[:, 3], index=index))
            if pieces:
                self._close_panel = Panel(pd.concat(pieces), name="close")
            else:
                self._close_panel = Panel.empty(name="close")
        return self._close_panel

    def close_frame(self) -> pd.DataFrame:
        """Calendar x asset table of closes (NaN where no bar)."""
        columns = {
            asset: pd.Series(buf.data[:, 3], index=pd.DatetimeIndex(buf.dates))
            for asset, buf in self._buffers.items()
        }
        return pd.DataFrame(columns, index=self._calendar, dtype=float)

    def to_panel(self) -> Panel:
        """OHLCV Panel of every stored bar."""
        pieces = []
        for asset, buf in self._buffers.items():
            index = pd.MultiIndex.from_arrays(
                [pd.DatetimeIndex(buf.dates), np.full(len(buf), asset, dtype=np.int64)],
                names=[DATE_LEVEL, ASSET_LEVEL],
            )
            pieces.append(pd.DataFrame(buf.data, index=index, columns=list(BAR_FIELDS)))
        if not pieces:
            return Panel.empty(columns=BAR_FIELDS)
        return Panel(pd.concat(pieces), name="bars")

    def next_session(self, when: DateLike) -> Optional[pd.Timestamp]:
        """Calendar session following ``when`` (None on the last session)."""
        pos = self._calendar.searchsorted(normalize_timestamp(when), side="right")
        if pos >= len(self._calendar):
            return None
        return self._calendar[pos]

    def sessions_between(
        self, start: Optional[DateLike] = None, end: Optional[DateLike] = None
    ) -> pd.DatetimeIndex:
        mask = np.ones(len(self._calendar), dtype=bool)
        if start is not None:
            mask &= self._calendar >= normalize_timestamp(start)
        if end is not None:
            mask &= self._calendar <= normalize_timestamp(end)
        return self._calendar[mask]

    def __len__(self) -> int:
        return len(self._buffers)

    def __repr__(self) -> str:
        return (
            f"BarStore(assets={len(self)}, sessions={len(self._calendar)}, "
            f"policy={self._policy.value})"
        )


def _field_index(field: str) -> int:
    try:
        return _FIELD_INDEX[field]
    except KeyError:
        raise ConfigurationError(f"Unknown bar field: {field}", field="field") from None


def _apply_policy(
    bars: pd.DataFrame, sessions: pd.DatetimeIndex, policy: MissingDataPolicy
) -> pd.DataFrame:
    """Apply the missing-data policy to one asset's date-indexed bars."""
    if policy is MissingDataPolicy.DROP:
        return bars.dropna(how="any")

    if policy is MissingDataPolicy.FORWARD_FILL:
        valid = bars[_PRICE_COLUMNS].notna().all(axis=1)
        if not valid.any():
            return bars.iloc[0:0]
        first = bars.index[valid.argmax()]
        last = bars.index[-1]
        span = sessions[(sessions >= first) & (sessions <= last)]
        filled = bars.reindex(span)
        filled[_PRICE_COLUMNS] = filled[_PRICE_COLUMNS].ffill()
        filled["volume"] = filled["volume"].fillna(0.0)
        return filled.dropna(how="any")

    return bars
