"""
Research Pipeline - Runs every stage of a factor study in order.

Stages:
1. factor evaluation (rolling windows over the BarStore)
2. forward returns for every configured horizon
3. statistics report (IC, IR, decay, regression, covariance)
4. portfolio construction for one factor or a composite
5. backtest of the target weights

Each run gets a run id bound into the structured log context.

Usage:
    pipeline = ResearchPipeline(load_settings_from_yaml())
    result = pipeline.run(store, factor_id="momentum")
    result.report.ir_table()
    result.backtest.summary()
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

import pandas as pd

from factorlab.backtest.engine import BacktestEngine, BacktestResult
from factorlab.config.settings import Settings
from factorlab.data.model import AssetId, DateLike, Panel
from factorlab.data.store import BarStore
from factorlab.evaluation.report import StatisticsEngine, StatisticsReport
from factorlab.evaluation.returns import forward_returns
from factorlab.factors.registry import FactorRegistry, default_registry
from factorlab.factors.runtime import FactorPanel, FactorRunner
from factorlab.portfolio.constructor import ConstructionResult, PortfolioConstructor
from factorlab.utils.logger import LogContext, generate_run_id, get_logger, set_run_id, setup_logging


@dataclass
class ResearchResult:
    """Hand-off bundle of one pipeline run."""

    run_id: str
    start_time: datetime
    end_time: datetime
    factors: FactorPanel
    forward_returns: Dict[int, Panel]
    report: StatisticsReport
    construction: Optional[ConstructionResult] = None
    backtest: Optional[BacktestResult] = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def weights(self) -> Optional[Panel]:
        return self.construction.weights if self.construction is not None else None

    def to_frames(self) -> Dict[str, pd.DataFrame]:
        """Every output as a plain table, keyed by name."""
        frames: Dict[str, pd.DataFrame] = {"factors": self.factors.to_frame()}
        frames.update(self.report.to_frames())
        if self.construction is not None:
            frames["weights"] = self.construction.weights.to_frame()
            frames["constraint_adjustments"] = self.construction.adjustments_frame()
        if self.backtest is not None:
            frames["performance"] = self.backtest.to_frame()
            frames["fills"] = self.backtest.fills_frame()
        return frames

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_seconds": self.duration_seconds,
            "factors": self.factors.ids,
            "rebalances": self.construction.n_rebalances if self.construction is not None else 0,
            "summary": self.backtest.summary().to_dict() if self.backtest is not None else None,
        }


class ResearchPipeline:
    """
    Factor evaluation, statistics, construction and backtest in one call.

    Logging is configured from ``settings.logging`` on construction. Errors
    propagate: a ConfigurationError or ConsistencyViolation from any stage
    aborts the run.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[FactorRegistry] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = registry if registry is not None else default_registry
        self._run_id = run_id
        setup_logging(self.settings)
        self._logger = get_logger(__name__)

    def run(
        self,
        store: BarStore,
        factor_id: Optional[str] = None,
        factor_weights: Optional[Mapping[str, float]] = None,
        groups: Optional[Mapping[AssetId, str]] = None,
        dates: Optional[Iterable[DateLike]] = None,
        assets: Optional[Iterable[AssetId]] = None,
        backtest: bool = True,
    ) -> ResearchResult:
        """
        Execute the pipeline.

        Args:
            store: Bar source
            factor_id: Factor to trade (None = composite of every factor)
            factor_weights: Composite weights when ``factor_id`` is None
            groups: asset -> group label for group neutralization
            dates: Evaluation dates (default: the store calendar)
            assets: Assets to score (default: every asset)
            backtest: Run construction and backtest after the statistics
        """
        run_id = self._run_id or generate_run_id()
        set_run_id(run_id)
        start_time = datetime.now(timezone.utc)
        settings = self.settings

        with LogContext(run_id=run_id):
            self._logger.info("Pipeline started", factors=len(self.registry), assets=len(store))

            with LogContext(stage="factor_runtime"):
                factors = FactorRunner(settings.runtime).evaluate(self.registry, store, dates, assets)

            with LogContext(stage="statistics"):
                evaluation = settings.evaluation
                horizons = set(evaluation.forward_horizons) | set(evaluation.decay_horizons)
                returns = forward_returns(store, horizons)
                report = StatisticsEngine(evaluation, settings.runtime).run(factors, returns=returns)

            construction = None
            result_backtest = None
            if backtest:
                with LogContext(stage="portfolio"):
                    construction = PortfolioConstructor(settings.portfolio).construct_detailed(
                        factors,
                        store=store,
                        groups=groups,
                        factor_id=factor_id,
                        factor_weights=factor_weights,
                    )
                with LogContext(stage="backtest"):
                    result_backtest = BacktestEngine(settings).run(store, construction.weights)

            end_time = datetime.now(timezone.utc)
            self._logger.info(
                "Pipeline completed",
                duration_seconds=round((end_time - start_time).total_seconds(), 3),
                rebalances=construction.n_rebalances if construction is not None else 0,
            )

        return ResearchResult(
            run_id=run_id,
            start_time=start_time,
            end_time=end_time,
            factors=factors,
            forward_returns=returns,
            report=report,
            construction=construction,
            backtest=result_backtest,
        )
