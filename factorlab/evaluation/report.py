"""
Statistics Engine - Assembles every statistic for a FactorPanel.

Per factor:
- Spearman and Pearson IC series for each forward horizon
- IR summary at the primary horizon
- Decay curve row
- Cross-sectional regressions at the primary horizon

Across factors:
- covariance of factor returns (regression slopes)
- covariance of Spearman IC series

All of it is read-only over immutable Panels, so factors are processed on a
thread pool when more than one worker is configured. Covariance that lacks
data is recorded as None rather than aborting the report.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import pandas as pd

from factorlab.config.settings import EvaluationConfig, RuntimeConfig
from factorlab.data.model import Panel
from factorlab.data.store import BarStore
from factorlab.evaluation.covariance import CovarianceResult, factor_covariance
from factorlab.evaluation.decay import decay_curve
from factorlab.evaluation.ic import ICMethod, ICSeries, ICSummary, ic_series
from factorlab.evaluation.regression import RegressionSeries, regression_series
from factorlab.evaluation.returns import forward_returns
from factorlab.exceptions import ConfigurationError, InsufficientDataError
from factorlab.utils.logger import TimedOperation, get_logger


@dataclass
class FactorStatistics:
    """All statistics of one factor."""

    factor_id: str
    spearman: Dict[int, ICSeries]
    pearson: Dict[int, ICSeries]
    summary: ICSummary
    decay: pd.Series
    regression: RegressionSeries

    def ic_summary_rows(self) -> List[dict]:
        rows = []
        for method, by_horizon in (("spearman", self.spearman), ("pearson", self.pearson)):
            for horizon, series in by_horizon.items():
                row = {"factor": self.factor_id, "method": method, "horizon": horizon}
                row.update(series.summary().to_dict())
                row["skipped"] = len(series.skipped)
                rows.append(row)
        return rows


@dataclass
class StatisticsReport:
    """Statistics of every factor plus cross-factor covariances."""

    primary_horizon: int
    factors: Dict[str, FactorStatistics] = field(default_factory=dict)
    decay: pd.DataFrame = field(default_factory=pd.DataFrame)
    factor_return_covariance: Optional[CovarianceResult] = None
    ic_covariance: Optional[CovarianceResult] = None

    def __getitem__(self, factor_id: str) -> FactorStatistics:
        return self.factors[factor_id]

    def ir_table(self) -> pd.DataFrame:
        """One row per factor: primary-horizon IC summary and regression summary."""
        rows = []
        for fid, stats in self.factors.items():
            row = {"factor": fid}
            row.update(stats.summary.to_dict())
            row["mean_factor_return"] = stats.regression.mean_coefficient
            row["fama_macbeth_t"] = stats.regression.fama_macbeth_t
            rows.append(row)
        return pd.DataFrame(rows).set_index("factor") if rows else pd.DataFrame()

    def to_frames(self) -> Dict[str, pd.DataFrame]:
        """Plain tables for the reporting collaborator."""
        ic_rows: List[dict] = []
        series_frames: List[pd.DataFrame] = []
        regression_frames: List[pd.DataFrame] = []
        for fid, stats in self.factors.items():
            ic_rows.extend(stats.ic_summary_rows())
            for method, by_horizon in (("spearman", stats.spearman), ("pearson", stats.pearson)):
                for horizon, series in by_horizon.items():
                    frame = pd.DataFrame({"ic": series.values, "n_obs": series.n_obs}).reset_index()
                    frame.insert(0, "horizon", horizon)
                    frame.insert(0, "method", method)
                    frame.insert(0, "factor", fid)
                    series_frames.append(frame)
            reg = stats.regression.to_frame()
            reg.insert(0, "factor", fid)
            regression_frames.append(reg)

        frames = {
            "ic_summary": pd.DataFrame(ic_rows),
            "ic_series": pd.concat(series_frames, ignore_index=True) if series_frames else pd.DataFrame(),
            "ir": self.ir_table(),
            "decay": self.decay,
            "regression": pd.concat(regression_frames, ignore_index=True) if regression_frames else pd.DataFrame(),
        }
        if self.factor_return_covariance is not None:
            frames["factor_covariance"] = self.factor_return_covariance.covariance
        if self.ic_covariance is not None:
            frames["ic_covariance"] = self.ic_covariance.covariance
        return frames


class StatisticsEngine:
    """
    Computes a StatisticsReport from factor and forward-return panels.

    Example:
        engine = StatisticsEngine(settings.evaluation, settings.runtime)
        report = engine.run(factor_panel, store)
        report.ir_table()
    """

    def __init__(
        self,
        config: Optional[EvaluationConfig] = None,
        runtime: Optional[RuntimeConfig] = None,
    ) -> None:
        self._config = config or EvaluationConfig()
        self._runtime = runtime or RuntimeConfig()
        self._logger = get_logger(__name__)

    def run(
        self,
        factor_panels: Mapping[str, Panel],
        store: Optional[BarStore] = None,
        returns: Optional[Mapping[int, Panel]] = None,
    ) -> StatisticsReport:
        """
        Build the report.

        Args:
            factor_panels: factor_id -> factor Panel (a FactorPanel works)
            store: Bar source for forward returns
            returns: Precomputed forward returns keyed by horizon
        """
        cfg = self._config
        needed = sorted(set(cfg.forward_horizons) | set(cfg.decay_horizons))
        available: Dict[int, Panel] = dict(returns or {})
        missing = [h for h in needed if h not in available]
        if missing:
            if store is None:
                raise ConfigurationError(
                    f"No forward returns for horizons {missing} and no store given", field="horizons"
                )
            available.update(forward_returns(store, missing))

        with TimedOperation("statistics", self._logger):
            factor_ids = list(factor_panels)
            if self._runtime.n_workers > 1 and len(factor_ids) > 1:
                with ThreadPoolExecutor(max_workers=self._runtime.n_workers) as executor:
                    computed = list(
                        executor.map(
                            lambda fid: self._factor_statistics(fid, factor_panels[fid], available),
                            factor_ids,
                        )
                    )
            else:
                computed = [self._factor_statistics(fid, factor_panels[fid], available) for fid in factor_ids]

            report = StatisticsReport(
                primary_horizon=cfg.primary_horizon,
                factors={s.factor_id: s for s in computed},
            )
            report.decay = pd.DataFrame(
                {s.factor_id: s.decay for s in computed},
                index=pd.Index(cfg.decay_horizons, name="horizon"),
                dtype=float,
            )
            report.factor_return_covariance = self._covariance(
                {s.factor_id: s.regression.factor_returns for s in computed}, "factor_returns"
            )
            report.ic_covariance = self._covariance(
                {s.factor_id: s.spearman[cfg.primary_horizon].values for s in computed}, "ic"
            )

        self._logger.info(
            "Statistics completed",
            factors=len(computed),
            horizons=cfg.forward_horizons,
            primary_horizon=cfg.primary_horizon,
        )
        return report

    def _factor_statistics(
        self, factor_id: str, panel: Panel, returns: Mapping[int, Panel]
    ) -> FactorStatistics:
        cfg = self._config
        spearman = {
            h: ic_series(panel, returns[h], method=ICMethod.SPEARMAN, horizon=h)
            for h in cfg.forward_horizons
        }
        pearson = {
            h: ic_series(panel, returns[h], method=ICMethod.PEARSON, standardize=cfg.standardize, horizon=h)
            for h in cfg.forward_horizons
        }
        decay = decay_curve({factor_id: panel}, cfg.decay_horizons, returns=returns)[factor_id]
        regression = regression_series(
            panel,
            returns[cfg.primary_horizon],
            standardize=cfg.standardize,
            horizon=cfg.primary_horizon,
        )
        return FactorStatistics(
            factor_id=factor_id,
            spearman=spearman,
            pearson=pearson,
            summary=spearman[cfg.primary_horizon].summary(),
            decay=decay,
            regression=regression,
        )

    def _covariance(self, series: Dict[str, pd.Series], label: str) -> Optional[CovarianceResult]:
        if not series:
            return None
        frame = pd.DataFrame(series)
        try:
            return factor_covariance(frame)
        except InsufficientDataError as e:
            self._logger.debug("Covariance unavailable", kind=label, reason=str(e))
            return None
