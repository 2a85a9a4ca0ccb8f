"""
Factor Runtime - Rolling-window evaluation of registered factors.

Turns a BarStore into a FactorPanel: one Panel of scores per factor, keyed by
(date, asset). Units of work are (factor, asset) columns. A column walks the
asset's buffer over the requested dates and calls the scoring function once
per date that has a full window. Columns are independent, so they may run on
a thread or process pool; the merge is sorted, which makes the result
identical to sequential evaluation.

Cell semantics:
- insufficient lookback -> absent
- scoring function returns None -> absent
- scoring function returns NaN -> explicit missing value
- scoring function raises -> FactorEvaluationError (fatal)
"""

from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from factorlab.config.settings import ExecutorKind, RuntimeConfig
from factorlab.data.calendar import evaluation_mask
from factorlab.data.model import (
    ASSET_LEVEL,
    DATE_LEVEL,
    VALUE_COLUMN,
    AssetId,
    DateLike,
    Panel,
    normalize_dates,
)
from factorlab.data.store import AssetBuffer, BarStore
from factorlab.exceptions import ConfigurationError, ConsistencyViolation, FactorEvaluationError
from factorlab.factors.base import FactorDefinition, FactorId
from factorlab.factors.registry import FactorRegistry
from factorlab.utils.logger import TimedOperation, get_logger

FACTOR_COLUMN = "factor"

# (factor_id, asset, rows, error) where error is (date, message) or None
ColumnResult = Tuple[FactorId, AssetId, List[Tuple[pd.Timestamp, float]], Optional[Tuple[pd.Timestamp, str]]]


# =============================================================================
# Module-level worker function for ProcessPoolExecutor
# =============================================================================
def _evaluate_column(
    definition: FactorDefinition,
    asset: AssetId,
    dates: np.ndarray,
    bar_dates: np.ndarray,
    bar_data: np.ndarray,
) -> ColumnResult:
    """Evaluate one factor for one asset over ``dates``.

    Module-level so it can be submitted to a ProcessPoolExecutor. Errors are
    returned rather than raised so the caller can attach full context.
    """
    buffer = AssetBuffer(asset, bar_dates, bar_data)
    rows: List[Tuple[pd.Timestamp, float]] = []
    for raw in dates:
        when = pd.Timestamp(raw)
        window = buffer.window(when, definition.lookback)
        if window is None:
            continue
        try:
            value = definition.score(asset, when, window)
        except Exception as e:
            return definition.factor_id, asset, rows, (when, f"{type(e).__name__}: {e}")
        if value is None:
            continue
        rows.append((when, value))
    return definition.factor_id, asset, rows, None


class FactorPanel(Mapping):
    """
    Mapping factor_id -> Panel of scores.

    Example:
        panel = evaluate(registry, store)
        panel["momentum"].cross_section("2024-03-01")
        panel.to_frame()   # long table: date, asset, factor, value
    """

    def __init__(self, panels: Dict[FactorId, Panel]) -> None:
        self._panels = dict(panels)

    def __getitem__(self, factor_id: FactorId) -> Panel:
        return self._panels[factor_id]

    def __iter__(self) -> Iterator[FactorId]:
        return iter(self._panels)

    def __len__(self) -> int:
        return len(self._panels)

    def factor(self, factor_id: FactorId) -> Panel:
        if factor_id not in self._panels:
            raise ConfigurationError(f"Factor '{factor_id}' is not in this panel")
        return self._panels[factor_id]

    @property
    def ids(self) -> List[FactorId]:
        return list(self._panels)

    @property
    def dates(self) -> pd.DatetimeIndex:
        """Union of dates with at least one score."""
        index = pd.DatetimeIndex([])
        for panel in self._panels.values():
            index = index.union(panel.dates)
        return index

    def cross_section(self, when: DateLike) -> pd.DataFrame:
        """Asset x factor table for one date (NaN where absent)."""
        columns = {fid: panel.cross_section(when) for fid, panel in self._panels.items()}
        return pd.DataFrame(columns)

    def coverage(self) -> pd.Series:
        """Number of defined (non-NaN) cells per factor."""
        return pd.Series(
            {fid: int(panel.series.notna().sum()) for fid, panel in self._panels.items()},
            dtype=np.int64,
            name="coverage",
        )

    def to_frame(self) -> pd.DataFrame:
        """Long hand-off table with columns date, asset, factor, value."""
        frames = []
        for fid, panel in self._panels.items():
            frame = panel.to_frame()
            frame.insert(2, FACTOR_COLUMN, fid)
            frames.append(frame)
        if not frames:
            return pd.DataFrame(columns=[DATE_LEVEL, ASSET_LEVEL, FACTOR_COLUMN, VALUE_COLUMN])
        return pd.concat(frames, ignore_index=True)

    def equals(self, other: "FactorPanel") -> bool:
        return (
            isinstance(other, FactorPanel)
            and self.ids == other.ids
            and all(self._panels[fid].equals(other._panels[fid]) for fid in self.ids)
        )

    def __repr__(self) -> str:
        return f"FactorPanel(factors={self.ids})"


class FactorRunner:
    """
    Evaluates every factor of a registry over a BarStore.

    Example:
        runner = FactorRunner(RuntimeConfig(n_workers=4))
        factor_panel = runner.evaluate(registry, store)
    """

    def __init__(self, config: Optional[RuntimeConfig] = None) -> None:
        self._config = config or RuntimeConfig()
        self._logger = get_logger(__name__)

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    def evaluate(
        self,
        registry: FactorRegistry,
        store: BarStore,
        dates: Optional[Iterable[DateLike]] = None,
        assets: Optional[Iterable[AssetId]] = None,
    ) -> FactorPanel:
        """
        Evaluate all registered factors.

        Args:
            registry: Factors to evaluate
            store: Bar source
            dates: Evaluation dates (defaults to the store calendar)
            assets: Assets to score (defaults to every asset in the store)

        Returns:
            FactorPanel with one Panel per factor

        Raises:
            FactorEvaluationError: A scoring function raised
            ConsistencyViolation: Duplicate cells at merge, or dates off the calendar
        """
        eval_dates = self._resolve_dates(store, dates)
        eval_assets = self._resolve_assets(store, assets)
        definitions = registry.definitions()

        tasks = [
            (definition, asset, eval_dates[evaluation_mask(eval_dates, definition.frequency)].values)
            for definition in definitions
            for asset in eval_assets
        ]

        with TimedOperation("factor_evaluation", self._logger):
            if self._config.n_workers > 1 and len(tasks) > 1:
                results = self._run_parallel(tasks, store)
            else:
                results = [
                    _evaluate_column(defn, asset, col_dates, *self._buffer_arrays(store, asset))
                    for defn, asset, col_dates in tasks
                ]

        panel = self._merge(definitions, results)
        self._logger.info(
            "Factor evaluation completed",
            factors=len(definitions),
            assets=len(eval_assets),
            dates=len(eval_dates),
            cells=int(panel.coverage().sum()) if len(panel) else 0,
            workers=self._config.n_workers,
        )
        return panel

    def _run_parallel(self, tasks: list, store: BarStore) -> List[ColumnResult]:
        pool_cls = (
            ProcessPoolExecutor if self._config.executor == ExecutorKind.PROCESS else ThreadPoolExecutor
        )
        self._logger.debug(
            "Using worker pool for factor evaluation",
            executor=self._config.executor.value,
            workers=self._config.n_workers,
            tasks=len(tasks),
        )
        results: List[ColumnResult] = []
        executor: Executor
        with pool_cls(max_workers=self._config.n_workers) as executor:
            futures = [
                executor.submit(
                    _evaluate_column, defn, asset, col_dates, *self._buffer_arrays(store, asset)
                )
                for defn, asset, col_dates in tasks
            ]
            for future in as_completed(futures):
                results.append(future.result())
        return results

    @staticmethod
    def _buffer_arrays(store: BarStore, asset: AssetId) -> Tuple[np.ndarray, np.ndarray]:
        buffer = store.buffer(asset)
        return buffer.dates, buffer.data

    @staticmethod
    def _resolve_dates(store: BarStore, dates: Optional[Iterable[DateLike]]) -> pd.DatetimeIndex:
        if dates is None:
            return store.calendar
        resolved = normalize_dates(dates).unique().sort_values()
        off = resolved[~resolved.isin(store.calendar)]
        if len(off):
            raise ConsistencyViolation("Evaluation date is not a calendar session", date=off[0])
        return resolved

    @staticmethod
    def _resolve_assets(store: BarStore, assets: Optional[Iterable[AssetId]]) -> List[AssetId]:
        if assets is None:
            return store.assets
        resolved = sorted({int(a) for a in assets})
        known = set(store.assets)
        unknown = [a for a in resolved if a not in known]
        if unknown:
            raise ConfigurationError(f"Unknown assets: {unknown}", field="assets")
        return resolved

    @staticmethod
    def _merge(definitions: List[FactorDefinition], results: List[ColumnResult]) -> FactorPanel:
        failures = sorted(
            (fid, asset, error) for fid, asset, _, error in results if error is not None
        )
        if failures:
            fid, asset, (when, message) = failures[0]
            raise FactorEvaluationError(fid, asset, when, message)

        cells: Dict[FactorId, Dict[Tuple[pd.Timestamp, AssetId], float]] = {
            d.factor_id: {} for d in definitions
        }
        for fid, asset, rows, _ in sorted(results, key=lambda r: (r[0], r[1])):
            bucket = cells[fid]
            for when, value in rows:
                key = (when, asset)
                if key in bucket:
                    raise ConsistencyViolation(
                        "Duplicate factor cell at merge", date=when, asset=asset, factor=fid
                    )
                bucket[key] = value

        return FactorPanel(
            {
                fid: Panel.from_records(
                    ((when, asset, value) for (when, asset), value in bucket.items()),
                    name=fid,
                )
                for fid, bucket in cells.items()
            }
        )


def evaluate(
    registry: FactorRegistry,
    store: BarStore,
    dates: Optional[Iterable[DateLike]] = None,
    assets: Optional[Iterable[AssetId]] = None,
    n_workers: int = 1,
    executor: Union[str, ExecutorKind] = ExecutorKind.THREAD,
) -> FactorPanel:
    """Evaluate ``registry`` over ``store`` (see FactorRunner.evaluate)."""
    try:
        config = RuntimeConfig(n_workers=n_workers, executor=executor)
    except ValueError as err:
        raise ConfigurationError(str(err), field="runtime") from err
    return FactorRunner(config).evaluate(registry, store, dates=dates, assets=assets)
