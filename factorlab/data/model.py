"""
Data Model - Time/asset indexed containers shared by every engine stage.

Key types:
- Timestamp: pandas.Timestamp normalized to the reference zone (naive UTC,
  floored to the session date for daily data)
- AssetId: dense integer handle issued by AssetIndex
- Bar: one adjusted OHLCV observation
- Panel: immutable table keyed by (date, asset)

Panel invariant: every (date, asset) pair maps to at most one row. A missing
key means "no data"; a NaN value is an explicit missing marker. The two are
never conflated except by the explicitly lossy ``to_wide``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from factorlab.exceptions import ConfigurationError, ConsistencyViolation

AssetId = int
DateLike = Union[str, date, datetime, pd.Timestamp, np.datetime64]

DATE_LEVEL = "date"
ASSET_LEVEL = "asset"
VALUE_COLUMN = "value"
BAR_FIELDS: Tuple[str, ...] = ("open", "high", "low", "close", "volume")


def normalize_timestamp(value: DateLike) -> pd.Timestamp:
    """Normalize a date-like value to the engine's reference representation.

    Timezone-aware values are converted to UTC and made naive; the result is
    floored to midnight because the engine works on daily sessions.
    """
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.normalize()


def normalize_dates(values: Iterable[DateLike]) -> pd.DatetimeIndex:
    """Vectorized ``normalize_timestamp``."""
    index = pd.DatetimeIndex(pd.to_datetime(list(values) if not isinstance(values, pd.Index) else values))
    if index.tz is not None:
        index = index.tz_convert("UTC").tz_localize(None)
    return index.normalize()


def melt_wide(frame: pd.DataFrame, value_name: str) -> pd.DataFrame:
    """Long (date, asset, value) table from a date x asset frame, NaN kept."""
    long = (
        frame.rename_axis(index=DATE_LEVEL, columns=None)
        .reset_index()
        .melt(id_vars=DATE_LEVEL, var_name=ASSET_LEVEL, value_name=value_name)
    )
    if pd.api.types.is_integer_dtype(frame.columns):
        long[ASSET_LEVEL] = long[ASSET_LEVEL].astype(np.int64)
    return long


class AssetIndex:
    """Dense, run-stable mapping between external symbols and AssetIds.

    Example:
        index = AssetIndex(["AAPL", "MSFT"])
        index.id_of("MSFT")   # 1
        index.symbol_of(0)    # "AAPL"
    """

    def __init__(self, symbols: Iterable[str]) -> None:
        ordered: List[str] = []
        seen: set[str] = set()
        for symbol in symbols:
            if symbol in seen:
                continue
            seen.add(symbol)
            ordered.append(symbol)
        self._symbols: Tuple[str, ...] = tuple(ordered)
        self._ids: Dict[str, AssetId] = {s: i for i, s in enumerate(self._symbols)}

    @property
    def symbols(self) -> Tuple[str, ...]:
        return self._symbols

    @property
    def ids(self) -> List[AssetId]:
        return list(range(len(self._symbols)))

    def id_of(self, symbol: str) -> AssetId:
        try:
            return self._ids[symbol]
        except KeyError:
            raise ConfigurationError(f"Unknown asset symbol: {symbol}") from None

    def symbol_of(self, asset_id: AssetId) -> str:
        if not 0 <= asset_id < len(self._symbols):
            raise ConfigurationError(f"Unknown asset id: {asset_id}")
        return self._symbols[asset_id]

    def __len__(self) -> int:
        return len(self._symbols)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._ids

    def __repr__(self) -> str:
        return f"AssetIndex(n={len(self)})"


@dataclass(frozen=True)
class Bar:
    """Adjusted OHLCV bar for one (asset, date). Immutable once ingested."""

    asset: AssetId
    date: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "date": self.date,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


class Panel:
    """
    Immutable table keyed by (date, asset).

    Scalar panels (factor scores, weights, returns) hold a single ``value``
    column; bar panels hold the OHLCV columns. Dates are the outer, ordered
    axis; assets are unordered within a date (stored sorted for determinism).

    Example:
        panel = Panel.from_records(
            [("2024-01-02", 0, 0.5), ("2024-01-02", 1, -0.2)],
            name="momentum",
        )
        panel.cross_section("2024-01-02")   # Series indexed by asset
    """

    __slots__ = ("_frame", "name")

    def __init__(
        self,
        data: Union[pd.DataFrame, pd.Series],
        name: Optional[str] = None,
    ) -> None:
        if isinstance(data, pd.Series):
            name = name if name is not None else (str(data.name) if data.name is not None else None)
            data = data.to_frame(VALUE_COLUMN)

        if not isinstance(data.index, pd.MultiIndex) or data.index.nlevels != 2:
            raise ConsistencyViolation(
                "Panel requires a two-level (date, asset) index", factor=name
            )

        dates = normalize_dates(data.index.get_level_values(0))
        assets = data.index.get_level_values(1).astype(np.int64)
        frame = data.copy()
        frame.index = pd.MultiIndex.from_arrays([dates, assets], names=[DATE_LEVEL, ASSET_LEVEL])

        duplicated = frame.index.duplicated()
        if duplicated.any():
            first_date, first_asset = frame.index[duplicated][0]
            raise ConsistencyViolation(
                "Duplicate (date, asset) key in panel",
                date=first_date,
                asset=int(first_asset),
                factor=name,
            )

        self._frame = frame.sort_index()
        self.name = name

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def empty(cls, name: Optional[str] = None, columns: Sequence[str] = (VALUE_COLUMN,)) -> "Panel":
        index = pd.MultiIndex.from_arrays(
            [pd.DatetimeIndex([]), pd.Index([], dtype=np.int64)],
            names=[DATE_LEVEL, ASSET_LEVEL],
        )
        return cls(pd.DataFrame({c: pd.Series(dtype=float) for c in columns}, index=index), name=name)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Tuple[DateLike, AssetId, float]],
        name: Optional[str] = None,
    ) -> "Panel":
        """Build a scalar panel from ``(date, asset, value)`` triples."""
        rows = list(records)
        if not rows:
            return cls.empty(name=name)
        dates, assets, values = zip(*rows)
        index = pd.MultiIndex.from_arrays(
            [normalize_dates(dates), pd.Index(assets, dtype=np.int64)],
            names=[DATE_LEVEL, ASSET_LEVEL],
        )
        return cls(pd.Series(np.asarray(values, dtype=float), index=index), name=name)

    @classmethod
    def from_wide(cls, frame: pd.DataFrame, name: Optional[str] = None) -> "Panel":
        """Build a scalar panel from a date x asset frame. NaN cells become absent."""
        long = melt_wide(frame, VALUE_COLUMN).dropna(subset=[VALUE_COLUMN])
        if long.empty:
            return cls.empty(name=name)
        return cls(long.set_index([DATE_LEVEL, ASSET_LEVEL])[VALUE_COLUMN].astype(float), name=name)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def columns(self) -> List[str]:
        return list(self._frame.columns)

    @property
    def is_scalar(self) -> bool:
        return self.columns == [VALUE_COLUMN]

    @property
    def dates(self) -> pd.DatetimeIndex:
        return pd.DatetimeIndex(self._frame.index.get_level_values(DATE_LEVEL).unique())

    @property
    def assets(self) -> List[AssetId]:
        return sorted(int(a) for a in self._frame.index.get_level_values(ASSET_LEVEL).unique())

    @property
    def series(self) -> pd.Series:
        """Copy of the value column (scalar panels only)."""
        if not self.is_scalar:
            raise ConsistencyViolation("series is only defined for scalar panels", factor=self.name)
        return self._frame[VALUE_COLUMN].copy()

    def cross_section(self, when: DateLike) -> Union[pd.Series, pd.DataFrame]:
        """Rows for one date indexed by asset (Series for scalar panels)."""
        ts = normalize_timestamp(when)
        try:
            section = self._frame.xs(ts, level=DATE_LEVEL)
        except KeyError:
            section = self._frame.iloc[0:0].droplevel(DATE_LEVEL)
        section = section.copy()
        if self.is_scalar:
            out = section[VALUE_COLUMN]
            out.name = self.name
            return out
        return section

    def get(self, when: DateLike, asset: AssetId, default: Any = None) -> Any:
        key = (normalize_timestamp(when), int(asset))
        if key not in self._frame.index:
            return default
        row = self._frame.loc[key]
        if self.is_scalar:
            return float(row[VALUE_COLUMN])
        return row.copy()

    def groupby_date(self) -> Iterator[Tuple[pd.Timestamp, Union[pd.Series, pd.DataFrame]]]:
        """Iterate ``(date, cross_section)`` in ascending date order."""
        for ts, group in self._frame.groupby(level=DATE_LEVEL, sort=True):
            section = group.droplevel(DATE_LEVEL)
            if self.is_scalar:
                out = section[VALUE_COLUMN].copy()
                out.name = self.name
                yield pd.Timestamp(ts), out
            else:
                yield pd.Timestamp(ts), section.copy()

    def select(
        self,
        dates: Optional[Iterable[DateLike]] = None,
        assets: Optional[Iterable[AssetId]] = None,
    ) -> "Panel":
        mask = np.ones(len(self._frame), dtype=bool)
        if dates is not None:
            wanted = normalize_dates(dates)
            mask &= self._frame.index.get_level_values(DATE_LEVEL).isin(wanted)
        if assets is not None:
            mask &= self._frame.index.get_level_values(ASSET_LEVEL).isin(list(assets))
        return Panel(self._frame[mask], name=self.name)

    def dropna(self) -> "Panel":
        """Drop rows holding explicit missing markers."""
        return Panel(self._frame.dropna(how="any"), name=self.name)

    def rename(self, name: str) -> "Panel":
        return Panel(self._frame, name=name)

    def to_frame(self) -> pd.DataFrame:
        """Long hand-off table with ``date`` and ``asset`` columns."""
        return self._frame.reset_index()

    def to_wide(self, column: str = VALUE_COLUMN) -> pd.DataFrame:
        """Date x asset frame. Lossy: absent cells and NaN both become NaN."""
        if self._frame.empty:
            return pd.DataFrame(dtype=float)
        return self._frame[column].unstack(ASSET_LEVEL).sort_index()

    def equals(self, other: "Panel") -> bool:
        return isinstance(other, Panel) and self._frame.equals(other._frame)

    def __len__(self) -> int:
        return len(self._frame)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        when, asset = key
        return (normalize_timestamp(when), int(asset)) in self._frame.index

    def __repr__(self) -> str:
        return (
            f"Panel(name={self.name!r}, rows={len(self)}, "
            f"dates={len(self.dates)}, columns={self.columns})"
        )
